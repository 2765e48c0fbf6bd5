import itertools

import pytest
from sqlmodel import Session, select

from lecturechat import models, services
from lecturechat.services import DatastoreAccess, EntityNotFoundError


@pytest.fixture
def datastore(session):
    return DatastoreAccess(session)


def test_get_all_groups_returns_no_groups_initially(datastore):
    assert datastore.get_all_groups() == []


def test_adding_same_group_twice_stores_one(datastore):
    first = datastore.add_group("MIT", "Computer Science", 2)
    second = datastore.add_group("MIT", "Computer Science", 2)
    assert first == second
    assert len(datastore.get_all_groups()) == 1


def test_groups_differing_in_year_are_distinct(datastore):
    datastore.add_group("MIT", "Computer Science", 2)
    datastore.add_group("MIT", "Computer Science", 3)
    assert len(datastore.get_all_groups()) == 2


def test_add_group_requires_university_and_degree(datastore):
    with pytest.raises(ValueError):
        datastore.add_group("  ", "Physics", 1)
    assert datastore.get_all_groups() == []


def test_join_two_of_three_groups(datastore):
    datastore.add_user("u1", "Ada")
    ids = [datastore.add_group("UPB", degree, 1) for degree in ("Maths", "Physics", "Chemistry")]
    datastore.join_group("u1", ids[0])
    datastore.join_group("u1", ids[2])
    assert [g.id for g in datastore.get_joined_groups("u1")] == [ids[0], ids[2]]
    assert [g.id for g in datastore.get_not_joined_groups("u1")] == [ids[1]]


def test_join_group_is_idempotent_and_links_both_sides(datastore):
    datastore.add_user("u1", "Ada")
    group_id = datastore.add_group("UPB", "Maths", 1)
    datastore.join_group("u1", group_id)
    datastore.join_group("u1", group_id)
    group = datastore.get_group(group_id)
    assert group.students == ["u1"]
    assert len(datastore.get_joined_groups("u1")) == 1


def test_join_requires_registered_user_and_existing_group(datastore):
    group_id = datastore.add_group("UPB", "Maths", 1)
    with pytest.raises(EntityNotFoundError):
        datastore.join_group("ghost", group_id)
    assert datastore.get_group(group_id).students == []
    datastore.add_user("u1", "Ada")
    with pytest.raises(EntityNotFoundError):
        datastore.join_group("u1", group_id + 100)
    assert datastore.get_joined_groups("u1") == []


def test_unknown_user_has_no_joined_groups(datastore):
    datastore.add_group("UPB", "Maths", 1)
    assert datastore.get_joined_groups("nobody") == []
    assert len(datastore.get_not_joined_groups("nobody")) == 1


def test_add_user_keeps_existing_record(datastore):
    datastore.add_user("u1", "Ada")
    group_id = datastore.add_group("UPB", "Maths", 1)
    datastore.join_group("u1", group_id)
    user = datastore.add_user("u1", "Someone Else")
    assert user.name == "Ada"
    assert user.groups == [group_id]
    assert datastore.is_user_registered("u1")
    assert not datastore.is_user_registered("u2")


def test_add_event_links_event_to_group(datastore):
    group_id = datastore.add_group("UPB", "Maths", 1)
    first = datastore.add_event_to_group(group_id, "Algebra", 1000, 2000, "u1")
    second = datastore.add_event_to_group(group_id, "Geometry", 3000, 4000, "u1")
    events = datastore.get_all_events_from_group(group_id)
    assert [e.id for e in events] == [first, second]
    assert events[0].creator == "u1"
    assert datastore.get_group(group_id).events == [first, second]


def test_add_event_to_missing_group_stores_nothing(datastore, session):
    with pytest.raises(EntityNotFoundError):
        datastore.add_event_to_group(42, "Orphan", 1000, 2000, "u1")
    assert session.exec(select(models.Event)).all() == []


def test_add_event_rejects_end_before_start(datastore):
    group_id = datastore.add_group("UPB", "Maths", 1)
    with pytest.raises(ValueError):
        datastore.add_event_to_group(group_id, "Backwards", 2000, 1000, "u1")
    assert datastore.get_all_events_from_group(group_id) == []


def test_joined_and_not_joined_events_of_group(datastore):
    datastore.add_user("u1", "Ada")
    group_id = datastore.add_group("UPB", "Maths", 1)
    e1 = datastore.add_event_to_group(group_id, "Lecture 1", 1000, 2000, "u2")
    e2 = datastore.add_event_to_group(group_id, "Lecture 2", 3000, 4000, "u2")
    datastore.join_event("u1", e2)
    datastore.join_event("u1", e2)
    assert [e.id for e in datastore.get_all_joined_events_from_group(group_id, "u1")] == [e2]
    assert [e.id for e in datastore.get_all_not_joined_events_from_group(group_id, "u1")] == [e1]
    assert datastore.get_event(e2).attendees == ["u1"]


def test_joined_events_filtered_by_start_window(datastore):
    datastore.add_user("u1", "Ada")
    group_id = datastore.add_group("UPB", "Maths", 1)
    early = datastore.add_event_to_group(group_id, "Early", 999, 1500, "u1")
    on_start = datastore.add_event_to_group(group_id, "On start", 1000, 1500, "u1")
    inside = datastore.add_event_to_group(group_id, "Inside", 1500, 2500, "u1")
    on_end = datastore.add_event_to_group(group_id, "On end", 2000, 2500, "u1")
    not_joined = datastore.add_event_to_group(group_id, "Not joined", 1200, 1300, "u1")
    for event_id in (early, on_start, inside, on_end):
        datastore.join_event("u1", event_id)
    found = datastore.get_joined_events_that_start_between_dates(1000, 2000, "u1")
    assert [e.id for e in found] == [on_start, inside]
    assert not_joined not in [e.id for e in found]


def test_events_from_joined_groups(datastore):
    datastore.add_user("u1", "Ada")
    maths = datastore.add_group("UPB", "Maths", 1)
    physics = datastore.add_group("UPB", "Physics", 1)
    e1 = datastore.add_event_to_group(maths, "Algebra", 1000, 2000, "u2")
    datastore.add_event_to_group(physics, "Optics", 1000, 2000, "u2")
    datastore.join_group("u1", maths)
    assert [e.id for e in datastore.get_events_from_joined_groups("u1")] == [e1]


def test_messages_are_limited_and_oldest_first(datastore, monkeypatch):
    ticks = itertools.count(1_600_000_000_000)
    monkeypatch.setattr(services, "_now_millis", lambda: next(ticks))
    group_id = datastore.add_group("UPB", "Maths", 1)
    event_id = datastore.add_event_to_group(group_id, "Lecture", 1000, 2000, "u1")
    for i in range(5):
        datastore.add_message(event_id, f"m{i}", "Ada")
    messages = datastore.get_messages_from_event(event_id, limit=3)
    assert [m.content for m in messages] == ["m2", "m3", "m4"]
    assert all(m.event == event_id and m.author == "Ada" for m in messages)
    assert len(datastore.get_event(event_id).messages) == 5


def test_add_message_to_missing_event_fails(datastore, session):
    with pytest.raises(EntityNotFoundError):
        datastore.add_message(7, "hello", "Ada")
    with pytest.raises(EntityNotFoundError):
        datastore.get_messages_from_event(7)
    assert session.exec(select(models.Message)).all() == []


def test_add_message_rejects_blank_content(datastore):
    group_id = datastore.add_group("UPB", "Maths", 1)
    event_id = datastore.add_event_to_group(group_id, "Lecture", 1000, 2000, "u1")
    with pytest.raises(ValueError):
        datastore.add_message(event_id, "   ", "Ada")
    assert datastore.get_messages_from_event(event_id) == []


def _miss_once(original):
    """Wrap a lookup so its first call sees nothing, as if another writer had not committed yet."""
    calls = itertools.count()

    def lookup(*args, **kwargs):
        if next(calls) == 0:
            return None
        return original(*args, **kwargs)

    return lookup


def test_add_group_returns_winner_of_concurrent_insert(datastore, engine, monkeypatch):
    with Session(engine) as other:
        winner = models.Group(university="UPB", degree="Maths", year=1)
        other.add(winner)
        other.commit()
        winner_id = winner.id
    monkeypatch.setattr(datastore.groups, "find_by_cohort", _miss_once(datastore.groups.find_by_cohort))
    assert datastore.add_group("UPB", "Maths", 1) == winner_id
    assert [g.id for g in datastore.get_all_groups()] == [winner_id]


def test_add_user_returns_winner_of_concurrent_insert(datastore, engine, monkeypatch):
    with Session(engine) as other:
        other.add(models.User(id="u1", name="Ada"))
        other.commit()
    monkeypatch.setattr(datastore.users, "get", _miss_once(datastore.users.get))
    user = datastore.add_user("u1", "Late Ada")
    assert user.id == "u1"
    assert user.name == "Ada"
    assert len(datastore.session.exec(select(models.User)).all()) == 1
