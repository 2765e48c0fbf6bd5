import os
import time

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, create_engine

TEST_CLIENT_ID = "test-client.apps.googleusercontent.com"

# Keep the app's own engine in memory and point the verifier at our client id.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GOOGLE_CLIENT_ID"] = TEST_CLIENT_ID

from lecturechat import main  # noqa: E402
from lecturechat.auth import TokenVerifier, get_token_verifier  # noqa: E402
from lecturechat.database import create_db_and_tables, get_session  # noqa: E402
from lecturechat.utils.rate_limit import SlidingWindowLimiter  # noqa: E402


@pytest.fixture(scope="session")
def signing_key():
    """Throwaway RSA key standing in for the identity provider's key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def client_id():
    """OAuth client id the test tokens are issued for."""
    return TEST_CLIENT_ID


@pytest.fixture
def verifier(signing_key, client_id):
    public_key = signing_key.public_key()
    return TokenVerifier(client_id, key_resolver=lambda _token: public_key)


@pytest.fixture
def make_token(signing_key):
    def _make(sub="user-1", name="Ada Lovelace", *, key=None, expires_in=3600, **claims):
        now = int(time.time())
        payload = {
            "sub": sub,
            "name": name,
            "aud": TEST_CLIENT_ID,
            "iss": "https://accounts.google.com",
            "iat": now,
            "exp": now + expires_in,
        }
        payload.update(claims)
        return jwt.encode(payload, key or signing_key, algorithm="RS256")

    return _make


@pytest.fixture
def auth_headers(make_token):
    def _headers(sub="user-1", name="Ada Lovelace"):
        return {"Authorization": f"Bearer {make_token(sub, name)}"}

    return _headers


@pytest.fixture
def client(engine, verifier, monkeypatch):
    def _session_override():
        with Session(engine) as s:
            yield s

    main.app.dependency_overrides[get_session] = _session_override
    main.app.dependency_overrides[get_token_verifier] = lambda: verifier
    monkeypatch.setattr(main, "_message_limiter", SlidingWindowLimiter(1000))
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()
