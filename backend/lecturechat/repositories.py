"""Repository classes encapsulating database operations.

Each repository is small and focused on a single entity kind. Repositories
never commit: they read, add and flush inside whatever transaction the
caller (`services.DatastoreAccess`) has open, so several of them can take
part in one unit of work.
"""

from typing import Iterable, List, Optional, Type

from sqlmodel import Session, SQLModel, select

from . import models


class EntityNotFoundError(ValueError):
    """Raised when an id does not resolve to a stored entity."""

    def __init__(self, kind: str, entity_id):
        super().__init__(f"Couldn't find entity with id {entity_id} and kind {kind}.")
        self.kind = kind
        self.entity_id = entity_id


class _Repository:
    model: Type[SQLModel]
    kind: str

    def __init__(self, session: Session):
        self.session = session

    def get(self, entity_id, for_update: bool = False):
        """Return the entity with `entity_id` or `None`.

        With `for_update` the row is locked until the surrounding
        transaction ends (ignored by SQLite, which locks the whole file).
        """
        if for_update:
            return self.session.get(self.model, entity_id, with_for_update=True, populate_existing=True)
        return self.session.get(self.model, entity_id)

    def require(self, entity_id, for_update: bool = False):
        """Like `get` but raise `EntityNotFoundError` when missing."""
        entity = self.get(entity_id, for_update=for_update)
        if entity is None:
            raise EntityNotFoundError(self.kind, entity_id)
        return entity

    def add(self, entity):
        """Stage a new entity and flush so its id is assigned."""
        self.session.add(entity)
        self.session.flush()
        return entity

    def list_by_ids(self, ids: Iterable) -> List:
        """Return the entities for `ids`, keeping the order of `ids`."""
        ids = list(ids)
        if not ids:
            return []
        stmt = select(self.model).where(self.model.id.in_(ids))
        found = {e.id: e for e in self.session.exec(stmt).all()}
        missing = [i for i in ids if i not in found]
        if missing:
            raise EntityNotFoundError(self.kind, missing[0])
        return [found[i] for i in ids]


class GroupRepository(_Repository):
    """Queries for `Group` rows."""
    model = models.Group
    kind = "Group"

    def find_by_cohort(self, university: str, degree: str, year: int) -> Optional[models.Group]:
        """Return the group for a university/degree/year triple, if any."""
        stmt = select(models.Group).where(
            models.Group.university == university,
            models.Group.degree == degree,
            models.Group.year == year,
        )
        return self.session.exec(stmt).first()

    def list_all(self) -> List[models.Group]:
        return self.session.exec(select(models.Group).order_by(models.Group.id)).all()


class EventRepository(_Repository):
    """Queries for `Event` rows."""
    model = models.Event
    kind = "Event"

    def list_starting_between(self, ids: Iterable[int], beginning: int, ending: int) -> List[models.Event]:
        """Return events among `ids` whose start is in `[beginning, ending)`."""
        ids = list(ids)
        if not ids:
            return []
        stmt = (
            select(models.Event)
            .where(
                models.Event.id.in_(ids),
                models.Event.start >= beginning,
                models.Event.start < ending,
            )
            .order_by(models.Event.start, models.Event.id)
        )
        return self.session.exec(stmt).all()


class UserRepository(_Repository):
    """Queries for `User` rows."""
    model = models.User
    kind = "User"


class MessageRepository(_Repository):
    """Queries for `Message` rows."""
    model = models.Message
    kind = "Message"

    def latest_for_event(self, event_id: int, limit: int) -> List[models.Message]:
        """Return the `limit` most recent messages of an event, oldest first."""
        stmt = (
            select(models.Message)
            .where(models.Message.event == event_id)
            .order_by(models.Message.timestamp.desc(), models.Message.id.desc())
            .limit(limit)
        )
        return list(reversed(self.session.exec(stmt).all()))
