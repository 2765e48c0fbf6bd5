"""SQLModel data models.

This module defines the four stored entity kinds. Relationships between
them are kept as denormalized ID lists on both sides (JSON columns) rather
than join tables, so every list change is a read-modify-write that must run
inside a transaction. Lists are only ever appended to; always assign a new
list so the change is flushed.
"""

from typing import List, Optional

from sqlalchemy import BigInteger, Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field


class Group(SQLModel, table=True):
    """A university/degree/year cohort.

    Fields:
    - `students`: ids of users that joined the group
    - `events`: ids of events created under the group, in creation order
    """
    __tablename__ = "groups"
    __table_args__ = (UniqueConstraint("university", "degree", "year", name="uq_group_cohort"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    university: str = Field(index=True)
    degree: str
    year: int
    students: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    events: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))


class Event(SQLModel, table=True):
    """A scheduled session under a `Group`.

    `start` and `end` are epoch milliseconds. `creator` is the subject id
    of the user that created the event.
    """
    __tablename__ = "events"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    start: int = Field(sa_column=Column(BigInteger, nullable=False, index=True))
    end: int = Field(sa_column=Column(BigInteger, nullable=False))
    creator: str
    messages: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    attendees: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))


class User(SQLModel, table=True):
    """A signed-in user, keyed by the identity provider's subject id."""
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    name: Optional[str] = None
    groups: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    events: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))


class Message(SQLModel, table=True):
    """A chat message posted to an event."""
    __tablename__ = "messages"

    id: Optional[int] = Field(default=None, primary_key=True)
    content: str
    timestamp: int = Field(sa_column=Column(BigInteger, nullable=False, index=True))
    author: Optional[str] = None
    event: int = Field(foreign_key="events.id", index=True)
