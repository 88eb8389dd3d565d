"""
tests/test_datelock.py
======================

Locking, clearing and extending a squad's date.
"""

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from downto.db import new_id
from downto.errors import Forbidden, InvalidInput, NotFound, StaleDate
from downto.lifecycle import GRACE_MESSAGE
from downto.models import Event, SquadState


def squad_from_check(service, check_hours=24):
    check = service.checks.create_check("alice", "tacos", check_hours)
    squad = asyncio.run(service.formation.form_squad("alice", ["bob"], check_id=check.id))
    return check, squad


def last_message(service, squad_id):
    return service.database.list_messages(squad_id)[-1]


def test_set_date_locks_whole_day(service):
    check, squad = squad_from_check(service)

    expires_at = service.datelock.set_date(squad.id, "bob", "2026-03-01", "19:30", actor_name="Bob")

    assert expires_at == datetime(2026, 3, 2, tzinfo=timezone.utc)
    stored = service.database.get_squad(squad.id)
    assert stored.expires_at == expires_at
    assert stored.locked_date == date(2026, 3, 1)

    mirrored = service.database.get_check(check.id)
    assert mirrored.event_date == date(2026, 3, 1)
    assert mirrored.event_time == "19:30"

    message = last_message(service, squad.id)
    assert message.is_system
    assert message.text == "Bob locked in Sun, Mar 1 at 7:30 PM"


def test_set_date_resets_warning_and_grace(service, clock):
    check, squad = squad_from_check(service, check_hours=1)
    service.datelock.extend_squad(squad.id, "alice", days=1)
    clock.advance(hours=23, minutes=30)
    result = asyncio.run(service.reconciler.run_sweep())
    assert (result.grace_messages, result.warnings) == (1, 1)

    service.datelock.set_date(squad.id, "alice", "2026-03-05")

    stored = service.database.get_squad(squad.id)
    assert stored.warned_at is None
    assert stored.grace_started_at is None
    assert service.membership.state_of(stored) is SquadState.ACTIVE
    assert last_message(service, squad.id).text == "Someone locked in Thu, Mar 5"

    # a locked squad does not fall back into grace while its check stays expired
    again = asyncio.run(service.reconciler.run_sweep())
    assert again.grace_messages == 0
    texts = [m.text for m in service.database.list_messages(squad.id)]
    assert texts.count(GRACE_MESSAGE) == 1


def test_set_date_today_is_allowed(service):
    _, squad = squad_from_check(service)
    expires_at = service.datelock.set_date(squad.id, "alice", "2026-02-27")
    assert expires_at == datetime(2026, 2, 28, tzinfo=timezone.utc)


def test_set_date_rejects_past_days(service):
    _, squad = squad_from_check(service)
    with pytest.raises(StaleDate):
        service.datelock.set_date(squad.id, "alice", "2026-02-26")
    assert service.database.get_squad(squad.id).locked_date is None


@pytest.mark.parametrize("day, at", [("03/01/2026", None), ("2026-03-01", "7pm"), ("", None)])
def test_set_date_rejects_bad_input(service, day, at):
    _, squad = squad_from_check(service)
    with pytest.raises(InvalidInput):
        service.datelock.set_date(squad.id, "alice", day, at)


def test_set_date_members_only(service):
    _, squad = squad_from_check(service)
    with pytest.raises(Forbidden):
        service.datelock.set_date(squad.id, "mallory", "2026-03-01")
    with pytest.raises(NotFound):
        service.datelock.set_date("missing", "alice", "2026-03-01")


def test_clear_date_by_author_keeps_timer(service):
    check, squad = squad_from_check(service)
    expires_at = service.datelock.set_date(squad.id, "bob", "2026-03-01", "19:30")

    with pytest.raises(Forbidden):
        service.datelock.clear_date(squad.id, "bob")
    service.datelock.clear_date(squad.id, "alice", actor_name="Alice")

    stored = service.database.get_squad(squad.id)
    assert stored.locked_date is None
    assert stored.expires_at == expires_at
    cleared = service.database.get_check(check.id)
    assert (cleared.event_date, cleared.event_time) == (None, None)
    assert last_message(service, squad.id).text == "Alice cleared the date"


def test_clear_date_on_event_squad_is_forbidden(service, clock):
    event = service.database.insert_event(Event(id=new_id(), title="rave", created_at=clock.now))
    squad = asyncio.run(service.formation.form_squad("alice", [], event_id=event.id))
    with pytest.raises(Forbidden):
        service.datelock.clear_date(squad.id, "alice")


def test_extend_from_current_expiry(service, clock):
    _, squad = squad_from_check(service)
    service.datelock.extend_squad(squad.id, "bob", days=1)
    clock.advance(hours=23, minutes=30)
    asyncio.run(service.reconciler.run_sweep())
    assert service.database.get_squad(squad.id).warned_at is not None

    expires_at = service.datelock.extend_squad(squad.id, "bob", actor_name="Bob")

    assert expires_at == datetime(2026, 3, 7, 12, 0, tzinfo=timezone.utc)
    stored = service.database.get_squad(squad.id)
    assert stored.expires_at == expires_at
    assert stored.warned_at is None
    assert last_message(service, squad.id).text == "Bob extended the squad +7 days"


def test_extend_lapsed_timer_counts_from_now(service, clock):
    _, squad = squad_from_check(service)
    service.datelock.extend_squad(squad.id, "alice", days=1)
    clock.advance(days=2)
    expires_at = service.datelock.extend_squad(squad.id, "alice", days=3)
    assert expires_at == clock.now + timedelta(days=3)


def test_extend_validation(service):
    _, squad = squad_from_check(service)
    with pytest.raises(InvalidInput):
        service.datelock.extend_squad(squad.id, "alice", days=0)
    with pytest.raises(Forbidden):
        service.datelock.extend_squad(squad.id, "mallory")
