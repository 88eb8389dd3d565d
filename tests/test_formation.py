"""
tests/test_formation.py
=======================

Squad formation: exactly one squad per check, capacity, openers, invites.
"""

import asyncio
import random
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone

import pytest

from downto.db import new_id
from downto.errors import CapacityExceeded, Forbidden, InvalidInput, NotFound
from downto.formation import SQUAD_OPENERS, dedupe, pick_opener, squad_name
from downto.models import Event, NotificationKind, Squad


def form(service, *args, **kwargs):
    async def scenario():
        squad = await service.formation.form_squad(*args, **kwargs)
        await service.dispatcher.drain()
        return squad

    return asyncio.run(scenario())


def test_form_from_check(service, notifier):
    check = service.checks.create_check("alice", "tacos tonight at the new place?", 24, max_squad_size=3)
    service.checks.respond(check.id, "bob", "down")
    service.checks.respond(check.id, "carol", "down")

    squad = form(service, "alice", ["bob", "carol", "bob"], check_id=check.id)

    assert squad.check_id == check.id
    assert squad.name == "tacos tonight at the new place..."
    assert squad.expires_at is None
    members = [m.user_id for m in service.database.get_members(squad.id)]
    assert sorted(members) == ["alice", "bob", "carol"]

    messages = service.database.list_messages(squad.id)
    assert messages[0].is_system and messages[0].sender_id is None
    assert messages[0].text == 'Squad formed for "tacos tonight at the new place?"'
    assert not messages[1].is_system and messages[1].sender_id == "alice"

    invited = sorted(user_id for user_id, kind, _ in notifier.sent if kind is NotificationKind.SQUAD_INVITE)
    assert invited == ["bob", "carol"]


def test_second_call_returns_same_squad(service, notifier):
    check = service.checks.create_check("alice", "tacos", 24)
    first = form(service, "alice", [], check_id=check.id)
    second = form(service, "alice", [], check_id=check.id)
    assert first.id == second.id
    assert len(service.database.list_messages(first.id)) == 2


def test_concurrent_formation_yields_one_squad(service):
    check = service.checks.create_check("alice", "tacos", 24, max_squad_size=4)
    service.checks.respond(check.id, "bob", "down")

    def attempt(_):
        return asyncio.run(service.formation.form_squad("alice", ["bob"], check_id=check.id)).id

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(attempt, range(8)))

    assert len(set(ids)) == 1
    with service.database.connect() as conn:
        total = conn.execute("SELECT COUNT(*) FROM squads WHERE check_id = ?", (check.id,)).fetchone()[0]
    assert total == 1
    assert len(service.database.list_messages(ids[0])) == 2


def test_selection_over_capacity(service):
    check = service.checks.create_check("alice", "tacos", 24, max_squad_size=3)
    with pytest.raises(CapacityExceeded):
        form(service, "alice", ["bob", "carol", "dave"], check_id=check.id)
    assert service.database.get_squad_by_check(check.id) is None


def test_non_author_counts_author_slot(service):
    check = service.checks.create_check("alice", "tacos", 24, max_squad_size=3)
    service.checks.respond(check.id, "bob", "down")
    with pytest.raises(CapacityExceeded):
        form(service, "bob", ["carol", "dave"], check_id=check.id)
    squad = form(service, "bob", ["carol"], check_id=check.id)
    members = sorted(m.user_id for m in service.database.get_members(squad.id))
    assert members == ["alice", "bob", "carol"]


def test_non_author_needs_responses(service):
    check = service.checks.create_check("alice", "tacos", 24)
    with pytest.raises(Forbidden):
        form(service, "bob", [], check_id=check.id)


def test_existing_squad_is_not_handed_to_unauthorized_caller(service):
    check = service.checks.create_check("alice", "tacos", 24)
    form(service, "alice", [], check_id=check.id)
    with pytest.raises(Forbidden):
        form(service, "mallory", [], check_id=check.id)


def test_members_must_fit_size_read_at_insert(service, clock):
    check = service.checks.create_check("alice", "tacos", 24, max_squad_size=2)
    squad = Squad(id=new_id(), name="tacos", created_at=clock.now, check_id=check.id)
    with pytest.raises(CapacityExceeded):
        service.database.insert_squad(squad, ["alice", "bob", "carol"], [])
    assert service.database.get_squad_by_check(check.id) is None


def test_missing_check_or_event(service):
    with pytest.raises(NotFound):
        form(service, "alice", [], check_id="missing")
    with pytest.raises(NotFound):
        form(service, "alice", [], event_id="missing")


def test_needs_exactly_one_origin(service):
    with pytest.raises(InvalidInput):
        form(service, "alice", [])
    with pytest.raises(InvalidInput):
        form(service, "alice", [], check_id="a", event_id="b")


def test_check_date_starts_timer(service):
    check = service.checks.create_check("alice", "tacos", 24, event_date="2026-03-03")
    squad = form(service, "alice", [], check_id=check.id)
    assert squad.locked_date == date(2026, 3, 3)
    assert squad.expires_at == datetime(2026, 3, 4, tzinfo=timezone.utc)


def test_form_from_event(service, clock, notifier):
    event = service.database.insert_event(
        Event(id=new_id(), title="Warehouse rave", created_at=clock.now, event_date=date(2026, 3, 7))
    )
    first = form(service, "alice", ["bob", "alice"], event_id=event.id)
    second = form(service, "carol", [], event_id=event.id)

    assert first.id != second.id
    assert first.event_id == event.id and first.check_id is None
    assert first.expires_at == datetime(2026, 3, 8, tzinfo=timezone.utc)
    assert sorted(m.user_id for m in service.database.get_members(first.id)) == ["alice", "bob"]
    assert service.database.list_messages(first.id)[0].text == 'Squad formed for "Warehouse rave"'
    assert [user_id for user_id, _, _ in notifier.sent] == ["bob"]


def test_invite_failures_do_not_fail_formation(service, notifier):
    notifier.fail = True
    check = service.checks.create_check("alice", "tacos", 24)
    squad = form(service, "alice", ["bob"], check_id=check.id)
    assert service.database.get_squad(squad.id) is not None


def test_helpers():
    assert squad_name("short") == "short"
    assert squad_name("x" * 31) == "x" * 30 + "..."
    assert dedupe(["b", "a", "b", "", "c"], exclude=["c"]) == ["b", "a"]
    assert pick_opener(None, random.Random(1)) in SQUAD_OPENERS

    class AlwaysTitle(random.Random):
        def random(self):
            return 0.0

    assert "tacos" in pick_opener("tacos", AlwaysTitle(3)).lower()
