"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints used by the LectureChat browser
client. Controllers are intentionally thin: they read query/form
parameters, delegate to `services.DatastoreAccess` and return JSON.
Parameter names keep the hyphenated spelling the client sends.

Endpoints implemented:
- GET /auth-status
- GET, POST /add-user
- GET, POST /groups
- GET, POST /joined-groups (POST /join-group is an alias)
- GET, POST /group-events
- GET /not-joined-events
- GET, POST /joined-events
- GET /user-events
- GET, POST /messages
- GET /health
"""

from contextlib import contextmanager
from typing import List, Optional
import json
import logging
import re
import time
import uuid

from fastapi import FastAPI, Depends, Form, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlmodel import Session

from .auth import Identity, get_identity, get_optional_identity
from .config import settings
from .database import create_db_and_tables, get_session
from .schemas import CreatedOut, EventOut, GroupOut, MessageOut, UserOut
from .services import DatastoreAccess, EntityNotFoundError
from .utils.rate_limit import SlidingWindowLimiter

app = FastAPI(title="LectureChat API")
logger = logging.getLogger("lecturechat.api")
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
_message_limiter = SlidingWindowLimiter(settings.MESSAGE_RATE_LIMIT_PER_MIN, window_seconds=60)

# The static client is served from another origin during development.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    record = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        "client": request.client.host if request.client else "unknown",
    }
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        record["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception("request_failed %s", json.dumps(record, ensure_ascii=True))
        raise
    response.headers["X-Request-ID"] = req_id
    record["status_code"] = response.status_code
    record["duration_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info("request_done %s", json.dumps(record, ensure_ascii=True))
    return response


_INT_PATTERN = re.compile(r"[+-]?[0-9]+")


def _parse_int(value: Optional[str], name: str, bits: int = 64) -> int:
    """Parse a required integer parameter or fail with 400.

    Only plain decimal digits with an optional sign are accepted, and the
    value must fit a signed integer of `bits` bits (the column width).
    """
    if value is None or not value.strip():
        raise HTTPException(status_code=400, detail=f"missing parameter: {name}")
    text = value.strip()
    if not _INT_PATTERN.fullmatch(text):
        raise HTTPException(status_code=400, detail=f"invalid integer for {name}: {value!r}")
    parsed = int(text)
    bound = 2 ** (bits - 1)
    if not -bound <= parsed < bound:
        raise HTTPException(status_code=400, detail=f"integer out of range for {name}: {value!r}")
    return parsed


def _require_text(value: Optional[str], name: str) -> str:
    if value is None or not value.strip():
        raise HTTPException(status_code=400, detail=f"missing parameter: {name}")
    return value


@contextmanager
def _datastore_errors():
    """Map façade errors to client-error responses."""
    try:
        yield
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/auth-status")
def auth_status(identity: Optional[Identity] = Depends(get_optional_identity)) -> bool:
    """Report whether the request carries a valid ID token."""
    return identity is not None


@app.get("/add-user")
def user_status(identity: Optional[Identity] = Depends(get_optional_identity), db: Session = Depends(get_session)) -> bool:
    """Report whether the caller is signed in and already registered."""
    if identity is None:
        return False
    return DatastoreAccess(db).is_user_registered(identity.subject)


@app.post("/add-user", response_model=UserOut)
def add_user(identity: Identity = Depends(get_identity), db: Session = Depends(get_session)):
    """Register the signed-in user (idempotent).

    The user id is the token subject and the display name is the token's
    `name` claim. An already registered user is returned unchanged.
    """
    user = DatastoreAccess(db).add_user(identity.subject, identity.name)
    return UserOut.model_validate(user)


@app.get("/groups", response_model=List[GroupOut])
def list_not_joined_groups(identity: Identity = Depends(get_identity), db: Session = Depends(get_session)):
    """List all groups the caller has not joined yet."""
    with _datastore_errors():
        groups = DatastoreAccess(db).get_not_joined_groups(identity.subject)
    return [GroupOut.model_validate(g) for g in groups]


@app.post("/groups", response_model=CreatedOut)
def add_group(
    university: Optional[str] = Form(None),
    degree: Optional[str] = Form(None),
    year: Optional[str] = Form(None),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_session),
):
    """Add a group; adding an existing university/degree/year returns its id."""
    university = _require_text(university, "university")
    degree = _require_text(degree, "degree")
    parsed_year = _parse_int(year, "year", bits=32)
    with _datastore_errors():
        group_id = DatastoreAccess(db).add_group(university, degree, parsed_year)
    return {"id": group_id}


@app.get("/joined-groups", response_model=List[GroupOut])
def list_joined_groups(identity: Identity = Depends(get_identity), db: Session = Depends(get_session)):
    """List the groups the caller joined, in joining order."""
    with _datastore_errors():
        groups = DatastoreAccess(db).get_joined_groups(identity.subject)
    return [GroupOut.model_validate(g) for g in groups]


@app.post("/joined-groups")
@app.post("/join-group")
def join_group(
    group_id: Optional[str] = Form(None, alias="group-id"),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_session),
):
    """Join a group. Joining twice has no further effect."""
    parsed = _parse_int(group_id, "group-id")
    with _datastore_errors():
        DatastoreAccess(db).join_group(identity.subject, parsed)
    return {"status": "ok"}


@app.get("/group-events", response_model=List[EventOut])
def list_group_events(
    group_id: Optional[str] = Query(None, alias="group-id"),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_session),
):
    """List every event of a group."""
    parsed = _parse_int(group_id, "group-id")
    with _datastore_errors():
        events = DatastoreAccess(db).get_all_events_from_group(parsed)
    return [EventOut.model_validate(e) for e in events]


@app.post("/group-events", response_model=CreatedOut)
def add_group_event(
    group_id: Optional[str] = Form(None, alias="group-id"),
    title: Optional[str] = Form(None),
    start: Optional[str] = Form(None),
    end: Optional[str] = Form(None),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_session),
):
    """Create an event under a group; `start`/`end` are epoch milliseconds.

    The caller is recorded as the event's creator.
    """
    parsed_group = _parse_int(group_id, "group-id")
    title = _require_text(title, "title")
    parsed_start = _parse_int(start, "start")
    parsed_end = _parse_int(end, "end")
    with _datastore_errors():
        event_id = DatastoreAccess(db).add_event_to_group(
            parsed_group, title, parsed_start, parsed_end, identity.subject
        )
    return {"id": event_id}


@app.get("/not-joined-events", response_model=List[EventOut])
def list_not_joined_events(
    group_id: Optional[str] = Query(None, alias="group-id"),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_session),
):
    """List the events of a group that the caller has not joined."""
    parsed = _parse_int(group_id, "group-id")
    with _datastore_errors():
        events = DatastoreAccess(db).get_all_not_joined_events_from_group(parsed, identity.subject)
    return [EventOut.model_validate(e) for e in events]


@app.get("/joined-events", response_model=List[EventOut])
def list_joined_events(
    group_id: Optional[str] = Query(None, alias="group-id"),
    beginning_date: Optional[str] = Query(None, alias="beginning-date"),
    ending_date: Optional[str] = Query(None, alias="ending-date"),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_session),
):
    """List joined events, either of one group or starting in a date window.

    With `group-id` the caller's joined events of that group are returned.
    Otherwise both `beginning-date` (inclusive) and `ending-date`
    (exclusive), in epoch milliseconds, are required.
    """
    access = DatastoreAccess(db)
    with _datastore_errors():
        if group_id is not None:
            events = access.get_all_joined_events_from_group(_parse_int(group_id, "group-id"), identity.subject)
        else:
            beginning = _parse_int(beginning_date, "beginning-date")
            ending = _parse_int(ending_date, "ending-date")
            events = access.get_joined_events_that_start_between_dates(beginning, ending, identity.subject)
    return [EventOut.model_validate(e) for e in events]


@app.post("/joined-events")
def join_event(
    event_id: Optional[str] = Form(None, alias="event-id"),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_session),
):
    """Join an event. Joining twice has no further effect."""
    parsed = _parse_int(event_id, "event-id")
    with _datastore_errors():
        DatastoreAccess(db).join_event(identity.subject, parsed)
    return {"status": "ok"}


@app.get("/user-events", response_model=List[EventOut])
def list_user_events(identity: Identity = Depends(get_identity), db: Session = Depends(get_session)):
    """List every event of every group the caller joined."""
    with _datastore_errors():
        events = DatastoreAccess(db).get_events_from_joined_groups(identity.subject)
    return [EventOut.model_validate(e) for e in events]


@app.get("/messages", response_model=List[MessageOut])
def list_messages(
    event_id: Optional[str] = Query(None, alias="id"),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_session),
):
    """Return the most recent messages of an event, oldest first."""
    parsed = _parse_int(event_id, "id")
    with _datastore_errors():
        messages = DatastoreAccess(db).get_messages_from_event(parsed, settings.MESSAGE_LIMIT)
    return [MessageOut.model_validate(m) for m in messages]


@app.post("/messages", response_model=CreatedOut)
def post_message(
    event_id: Optional[str] = Form(None, alias="id"),
    message: Optional[str] = Form(None),
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_session),
):
    """Post a chat message to an event, authored by the caller's display name."""
    parsed = _parse_int(event_id, "id")
    content = _require_text(message, "message")
    access = DatastoreAccess(db)
    # Requests for unknown events must not use up the caller's quota.
    with _datastore_errors():
        access.get_event(parsed)
    allowed, retry_after = _message_limiter.allow(identity.subject)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )
    with _datastore_errors():
        message_id = access.add_message(parsed, content, identity.name or identity.subject)
    return {"id": message_id}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
