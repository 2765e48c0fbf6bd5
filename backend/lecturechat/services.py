"""Data-access façade used by HTTP controllers.

`DatastoreAccess` translates the application's domain operations (add a
group, join an event, post a message, ...) into reads and writes through
the repositories. Every operation that checks-then-writes or
reads-a-list-then-appends runs inside one `transaction`, so it is
committed or rolled back as a whole. Errors are raised to the caller:
`EntityNotFoundError` for ids that do not resolve, `ValueError` for
arguments that make no sense.
"""

import logging
import time
from typing import List

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import models, repositories
from .database import transaction
from .repositories import EntityNotFoundError

logger = logging.getLogger("lecturechat.datastore")

DEFAULT_MESSAGE_LIMIT = 20

__all__ = ["DatastoreAccess", "EntityNotFoundError", "DEFAULT_MESSAGE_LIMIT"]


def _now_millis() -> int:
    return int(time.time() * 1000)


class DatastoreAccess:
    """Transactional operations over groups, events, users and messages."""

    def __init__(self, session: Session):
        self.session = session
        self.groups = repositories.GroupRepository(session)
        self.events = repositories.EventRepository(session)
        self.users = repositories.UserRepository(session)
        self.messages = repositories.MessageRepository(session)

    # groups

    def add_group(self, university: str, degree: str, year: int) -> int:
        """Add a group unless one exists for the same cohort (atomic).

        Returns the id of the new group, or of the existing one. A
        concurrent insert of the same cohort trips the unique constraint;
        the loser re-reads and returns the winner's id.
        """
        university = (university or "").strip()
        degree = (degree or "").strip()
        if not university or not degree:
            raise ValueError("university and degree are required")
        try:
            with transaction(self.session):
                existing = self.groups.find_by_cohort(university, degree, year)
                if existing is not None:
                    return existing.id
                group = self.groups.add(models.Group(university=university, degree=degree, year=year))
                group_id = group.id
        except IntegrityError:
            existing = self.groups.find_by_cohort(university, degree, year)
            if existing is None:
                raise
            return existing.id
        logger.info("group_created id=%s university=%r degree=%r year=%s", group_id, university, degree, year)
        return group_id

    def get_all_groups(self) -> List[models.Group]:
        return self.groups.list_all()

    def get_group(self, group_id: int) -> models.Group:
        return self.groups.require(group_id)

    # events

    def add_event_to_group(self, group_id: int, title: str, start: int, end: int, creator: str) -> int:
        """Create an event and link it to its group in one transaction.

        `start` and `end` are epoch milliseconds. Raises
        `EntityNotFoundError` if the group does not exist, in which case
        nothing is stored.
        """
        if not title or not title.strip():
            raise ValueError("title is required")
        if end < start:
            raise ValueError("event end must not be before its start")
        with transaction(self.session):
            group = self.groups.require(group_id, for_update=True)
            event = self.events.add(models.Event(title=title.strip(), start=start, end=end, creator=creator))
            event_id = event.id
            group.events = [*group.events, event_id]
            self.session.add(group)
        logger.info("event_created id=%s group_id=%s creator=%s", event_id, group_id, creator)
        return event_id

    def get_event(self, event_id: int) -> models.Event:
        return self.events.require(event_id)

    def get_all_events_from_group(self, group_id: int) -> List[models.Event]:
        """Return the events of a group in the order they were added."""
        group = self.groups.require(group_id)
        return self.events.list_by_ids(group.events)

    # users

    def is_user_registered(self, user_id: str) -> bool:
        return self.users.get(user_id) is not None

    def add_user(self, user_id: str, name: str) -> models.User:
        """Register the user unless already registered; return the stored user.

        Two first sign-ins of the same user can race; the loser's insert
        violates the primary key and it returns the winner's record.
        """
        try:
            with transaction(self.session):
                user = self.users.get(user_id)
                if user is not None:
                    return user
                user = self.users.add(models.User(id=user_id, name=name))
        except IntegrityError:
            existing = self.users.get(user_id)
            if existing is None:
                raise
            return existing
        logger.info("user_registered id=%s", user_id)
        return user

    def _join(self, user_id: str, target_repo, target_id: int, user_field: str, target_field: str) -> None:
        """Link a user and a group/event on both sides, skipping ids already present."""
        with transaction(self.session):
            user = self.users.require(user_id, for_update=True)
            target = target_repo.require(target_id, for_update=True)
            joined = getattr(user, user_field)
            if target_id not in joined:
                setattr(user, user_field, [*joined, target_id])
                self.session.add(user)
            members = getattr(target, target_field)
            if user_id not in members:
                setattr(target, target_field, [*members, user_id])
                self.session.add(target)
        logger.info("joined user_id=%s %s=%s", user_id, target_repo.kind.lower(), target_id)

    def join_group(self, user_id: str, group_id: int) -> None:
        self._join(user_id, self.groups, group_id, "groups", "students")

    def join_event(self, user_id: str, event_id: int) -> None:
        self._join(user_id, self.events, event_id, "events", "attendees")

    def get_joined_groups(self, user_id: str) -> List[models.Group]:
        """Return the groups joined by the user (empty for unknown users)."""
        user = self.users.get(user_id)
        if user is None:
            return []
        return self.groups.list_by_ids(user.groups)

    def get_not_joined_groups(self, user_id: str) -> List[models.Group]:
        """Return every group the user has not joined yet."""
        joined = {g.id for g in self.get_joined_groups(user_id)}
        return [g for g in self.get_all_groups() if g.id not in joined]

    def get_joined_events(self, user_id: str) -> List[models.Event]:
        user = self.users.get(user_id)
        if user is None:
            return []
        return self.events.list_by_ids(user.events)

    def get_all_joined_events_from_group(self, group_id: int, user_id: str) -> List[models.Event]:
        joined = {e.id for e in self.get_joined_events(user_id)}
        return [e for e in self.get_all_events_from_group(group_id) if e.id in joined]

    def get_all_not_joined_events_from_group(self, group_id: int, user_id: str) -> List[models.Event]:
        joined = {e.id for e in self.get_joined_events(user_id)}
        return [e for e in self.get_all_events_from_group(group_id) if e.id not in joined]

    def get_joined_events_that_start_between_dates(self, beginning: int, ending: int, user_id: str) -> List[models.Event]:
        """Return joined events whose start lies in `[beginning, ending)`.

        Bounds are epoch milliseconds; results are ordered by start time.
        """
        user = self.users.get(user_id)
        if user is None:
            return []
        return self.events.list_starting_between(user.events, beginning, ending)

    def get_events_from_joined_groups(self, user_id: str) -> List[models.Event]:
        """Return every event of every group the user joined."""
        events = []
        for group in self.get_joined_groups(user_id):
            events.extend(self.events.list_by_ids(group.events))
        return events

    # messages

    def add_message(self, event_id: int, content: str, author: str) -> int:
        """Store a message and append it to the event's message list (atomic)."""
        if not content or not content.strip():
            raise ValueError("message must not be empty")
        with transaction(self.session):
            event = self.events.require(event_id, for_update=True)
            message = self.messages.add(
                models.Message(content=content, timestamp=_now_millis(), author=author, event=event_id)
            )
            message_id = message.id
            event.messages = [*event.messages, message_id]
            self.session.add(event)
        logger.debug("message_added id=%s event_id=%s", message_id, event_id)
        return message_id

    def get_messages_from_event(self, event_id: int, limit: int = DEFAULT_MESSAGE_LIMIT) -> List[models.Message]:
        """Return the `limit` most recent messages of an event, oldest first."""
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.events.require(event_id)
        return self.messages.latest_for_event(event_id, limit)
