# routeplanner/config/logging.py
import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .settings import Settings, get_settings


# Custom formatter with colors for console output
class ColoredFormatter(logging.Formatter):
    """Custom formatter with color coding for different log levels."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        levelname = record.levelname
        record.levelname = f"{color}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


# JSON formatter for structured logging
class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging in production."""

    EXTRA_FIELDS = ('vendor', 'operation', 'duration', 'occurrence_key', 'route_day')

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        for field in self.EXTRA_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


def build_logging_config(settings: Settings) -> Dict[str, Any]:
    """Build the dictConfig mapping for the given settings."""
    file_formatter = 'json' if settings.LOG_JSON else 'detailed'
    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'standard': {
                'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S'
            },
            'detailed': {
                'format': '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(funcName)s(): %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S'
            },
            'colored': {
                '()': ColoredFormatter,
                'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S'
            },
            'json': {
                '()': JSONFormatter
            }
        },
        'handlers': {
            'console': {
                'level': 'DEBUG' if settings.DEBUG else 'INFO',
                'class': 'logging.StreamHandler',
                'formatter': 'colored' if settings.DEBUG else 'standard',
                'stream': 'ext://sys.stdout'
            },
            'file': {
                'level': 'INFO',
                'class': 'logging.handlers.RotatingFileHandler',
                'formatter': file_formatter,
                'filename': settings.LOG_FILE,
                'maxBytes': 10485760,  # 10MB
                'backupCount': 5,
                'encoding': 'utf8'
            }
        },
        'loggers': {
            '': {  # Root logger
                'handlers': ['console', 'file'],
                'level': settings.LOG_LEVEL,
                'propagate': False
            },
            'routeplanner': {
                'handlers': ['console', 'file'],
                'level': 'DEBUG' if settings.DEBUG else 'INFO',
                'propagate': False
            },
            'routeplanner.backend': {
                'handlers': ['console', 'file'],
                'level': 'INFO',
                'propagate': False
            },
            'api': {
                'handlers': ['console', 'file'],
                'level': 'INFO',
                'propagate': False
            },
            'uvicorn': {
                'handlers': ['console'],
                'level': 'INFO',
                'propagate': False
            },
            'sqlalchemy.engine': {
                'handlers': ['file'],
                'level': 'INFO' if settings.DEBUG else 'WARNING',
                'propagate': False
            }
        }
    }


def setup_logging(settings: Optional[Settings] = None):
    """Setup logging configuration."""
    settings = settings or get_settings()
    log_dir = os.path.dirname(settings.LOG_FILE)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    logging.config.dictConfig(build_logging_config(settings))

    if not settings.DEBUG:
        # Reduce noise in production
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the specified name."""
    return logging.getLogger(name)


def log_backend_call(operation: str, vendor: str, duration: float, ok: bool = True):
    """Log a call to the spreadsheet-backed API."""
    logger = get_logger("routeplanner.backend")
    extra = {'operation': operation, 'vendor': vendor, 'duration': duration}
    if ok:
        logger.info(f"Backend {operation} for {vendor} ({duration:.3f}s)", extra=extra)
    else:
        logger.error(f"Backend {operation} for {vendor} failed after {duration:.3f}s", extra=extra)


def log_route_event(event: str, vendor: str, details: str = None):
    """Log a route lifecycle event (start, finish, reschedules committed)."""
    logger = get_logger("routeplanner")
    message = f"Route Event: {event} - Vendor: {vendor}"
    if details:
        message += f" - {details}"
    logger.info(message, extra={'vendor': vendor})


# Performance logging decorator
def log_performance(logger_name: str = "routeplanner"):
    """Decorator to log function performance."""
    def decorator(func):
        import functools
        import time

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(logger_name)
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                duration = time.perf_counter() - start_time
                logger.debug(f"{func.__name__} completed in {duration:.3f}s")
                return result
            except Exception as e:
                duration = time.perf_counter() - start_time
                logger.error(f"{func.__name__} failed after {duration:.3f}s: {str(e)}")
                raise
        return wrapper
    return decorator


# Export commonly used functions
__all__ = [
    "setup_logging",
    "get_logger",
    "log_backend_call",
    "log_route_event",
    "log_performance"
]
