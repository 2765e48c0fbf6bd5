"""Pydantic response schemas used by the API.

Schemas keep the JSON shapes sent to the browser client stable,
independent of how the tables store them.
"""

from pydantic import BaseModel, ConfigDict
from typing import List, Optional


class GroupOut(BaseModel):
    """A group with its member and event id lists."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    university: str
    degree: str
    year: int
    students: List[str] = []
    events: List[int] = []


class EventOut(BaseModel):
    """An event; `start`/`end` are epoch milliseconds."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    start: int
    end: int
    creator: str
    messages: List[int] = []
    attendees: List[str] = []


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    groups: List[int] = []
    events: List[int] = []


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    content: str
    timestamp: int
    author: Optional[str] = None
    event: int


class CreatedOut(BaseModel):
    """Id of a newly created (or already existing) entity."""
    id: int
