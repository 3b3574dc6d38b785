import asyncio

import pytest

from routeplanner.core.exceptions import (
    BackendOperationError,
    CandidateDayRequiredError,
    ConflictError,
    NoPendingReschedulesError,
    UnknownWeekdayError,
)
from routeplanner.schemas.route import VisitStatus
from routeplanner.utils.date_utils import RouteDay

from fakes import NOW, TODAY, client_record


def pending_on(planner, day):
    planner.select_day(day, NOW)
    return [o.key for o in planner.day_plan(NOW).pending]


@pytest.fixture
def loaded(planner, fake_api):
    fake_api.clients = [
        client_record("Tienda Sur"),
        client_record("Abarrotes Luna", day="Miercoles", client_type="CLEY", delivery_day="Viernes"),
    ]
    asyncio.run(planner.load(NOW))
    return planner


def test_postpone_moves_visit_into_pool(loaded, fake_api):
    entry = asyncio.run(loaded.postpone("Tienda Sur", candidate_day="Jueves", now=NOW))

    assert entry.original_day == RouteDay.WEDNESDAY
    assert entry.postponed_on == TODAY
    assert entry.candidate_day == RouteDay.THURSDAY
    assert loaded.state.status_of("Tienda Sur") == VisitStatus.POSTPONED
    assert "Tienda Sur" not in pending_on(loaded, "Miercoles")


def test_regular_postpone_needs_candidate_day(loaded, fake_api):
    with pytest.raises(CandidateDayRequiredError):
        asyncio.run(loaded.postpone("Tienda Sur", now=NOW))

    assert "Tienda Sur" not in loaded.state.postpone_pool
    assert loaded.state.status_of("Tienda Sur") == VisitStatus.PENDING
    assert fake_api.count("batch_reschedule") == 0


def test_postponing_twice_is_a_conflict(loaded):
    asyncio.run(loaded.postpone("Tienda Sur", candidate_day="Jueves", now=NOW))
    with pytest.raises(ConflictError):
        asyncio.run(loaded.postpone("Tienda Sur", candidate_day="Viernes", now=NOW))


def test_regular_client_reschedule_to_another_day_is_persisted(loaded, fake_api):
    asyncio.run(loaded.postpone("Tienda Sur", candidate_day="Jueves", now=NOW))
    assert asyncio.run(loaded.reschedule("Tienda Sur", "viernes"))

    assert fake_api.payloads("batch_reschedule") == [
        [{"clientName": "Tienda Sur", "originalDay": "Miercoles", "newDay": "Jueves", "visitType": "Normal"}],
        [{"clientName": "Tienda Sur", "originalDay": "Miercoles", "newDay": "Viernes", "visitType": "Normal"}],
    ]
    assert "Tienda Sur" not in loaded.state.postpone_pool
    assert loaded.state.status_of("Tienda Sur") == VisitStatus.PENDING
    assert "Tienda Sur" not in pending_on(loaded, "Miercoles")
    assert "Tienda Sur" not in pending_on(loaded, "Jueves")
    assert "Tienda Sur" in pending_on(loaded, "Viernes")


def test_failed_regular_reschedule_is_fully_reverted(loaded, fake_api):
    asyncio.run(loaded.postpone("Tienda Sur", candidate_day="Jueves", now=NOW))
    fake_api.failing.add("batch_reschedule")

    with pytest.raises(BackendOperationError):
        asyncio.run(loaded.reschedule("Tienda Sur", "Viernes"))

    assert "Tienda Sur" in loaded.state.postpone_pool
    assert loaded.state.overlays["Tienda Sur"].new_day == RouteDay.THURSDAY
    assert loaded.state.status_of("Tienda Sur") == VisitStatus.POSTPONED
    assert "Tienda Sur" not in pending_on(loaded, "Viernes")


def test_postpone_with_candidate_day_persists_immediately(loaded, fake_api):
    asyncio.run(loaded.postpone("Tienda Sur", candidate_day="Viernes", now=NOW))

    assert fake_api.count("batch_reschedule") == 1
    assert loaded.state.postpone_pool["Tienda Sur"].persisted_day == RouteDay.FRIDAY

    # Confirming the same day does not write again
    asyncio.run(loaded.reschedule("Tienda Sur", "Viernes"))
    assert fake_api.count("batch_reschedule") == 1
    assert "Tienda Sur" in pending_on(loaded, "Viernes")


def test_failed_immediate_postpone_is_reverted(loaded, fake_api):
    fake_api.failing.add("batch_reschedule")
    with pytest.raises(BackendOperationError):
        asyncio.run(loaded.postpone("Tienda Sur", candidate_day="Viernes", now=NOW))

    assert "Tienda Sur" not in loaded.state.postpone_pool
    assert loaded.state.status_of("Tienda Sur") == VisitStatus.PENDING


def test_reschedule_without_postpone_is_ignored(loaded, fake_api):
    assert asyncio.run(loaded.reschedule("Tienda Sur", "Jueves")) is False
    assert fake_api.count("batch_reschedule") == 0
    assert "Tienda Sur" not in loaded.state.overlays


def test_unknown_target_day(loaded):
    asyncio.run(loaded.postpone("Tienda Sur", candidate_day="Jueves", now=NOW))
    with pytest.raises(UnknownWeekdayError):
        asyncio.run(loaded.reschedule("Tienda Sur", "Mañana"))


def test_dual_cadence_reschedule_is_queued_until_commit(loaded, fake_api):
    key = "Abarrotes Luna (Pedidos)"
    asyncio.run(loaded.postpone(key, now=NOW))
    asyncio.run(loaded.reschedule(key, "Jueves"))

    assert fake_api.count("batch_reschedule") == 0
    assert len(loaded.state.pending_reschedules) == 1
    assert loaded.state.overlays[key].pending
    assert key in pending_on(loaded, "Jueves")

    # A new choice for the same visit replaces the queued one
    asyncio.run(loaded.postpone(key, now=NOW))
    asyncio.run(loaded.reschedule(key, "Sabado"))
    assert [item.new_day for item in loaded.state.pending_reschedules] == ["Sabado"]
    assert loaded.state.pending_reschedules[0].original_day == "Jueves"

    saved = asyncio.run(loaded.commit_reschedules())

    assert saved == 1
    assert fake_api.count("batch_reschedule") == 1
    assert fake_api.count("fetch_reprogramadas") == 2
    assert loaded.state.pending_reschedules == []
    assert not loaded.state.overlays[key].pending
    assert key in pending_on(loaded, "Sabado")


def test_failed_commit_keeps_queue(loaded, fake_api):
    key = "Abarrotes Luna (Pedidos)"
    asyncio.run(loaded.postpone(key, now=NOW))
    asyncio.run(loaded.reschedule(key, "Jueves"))
    fake_api.failing.add("batch_reschedule")

    with pytest.raises(BackendOperationError):
        asyncio.run(loaded.commit_reschedules())

    assert len(loaded.state.pending_reschedules) == 1
    assert loaded.state.overlays[key].pending


def test_commit_with_empty_queue(loaded):
    with pytest.raises(NoPendingReschedulesError):
        asyncio.run(loaded.commit_reschedules())


def test_completing_queued_delivery_drops_pending_reschedule(loaded, fake_api):
    key = "Abarrotes Luna (Entrega)"
    loaded.select_day("Viernes", NOW)
    asyncio.run(loaded.postpone(key, now=NOW))
    asyncio.run(loaded.reschedule(key, "Miercoles"))
    loaded.select_day("Miercoles", NOW)

    asyncio.run(loaded.complete(key, now=NOW))

    assert loaded.state.pending_reschedules == []
    assert key not in loaded.state.overlays
    assert fake_api.count("deactivate_reschedule") == 0
