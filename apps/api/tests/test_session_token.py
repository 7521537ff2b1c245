import pytest
from jose import jwt

from config import settings
from services.session_token import SESSION_TOKEN_ISSUER, SESSION_TOKEN_TYPE, create_session_token, decode_session_token


def test_round_trip_claims():
    token = create_session_token("owner-1", email="owner@example.com")["token"]

    claims = decode_session_token(token)

    assert claims["sub"] == "owner-1"
    assert claims["email"] == "owner@example.com"
    assert claims["type"] == SESSION_TOKEN_TYPE


def test_foreign_token_type_is_rejected():
    token = jwt.encode(
        {"sub": "owner-1", "type": "refresh", "iss": SESSION_TOKEN_ISSUER},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )

    with pytest.raises(ValueError):
        decode_session_token(token)


def test_foreign_issuer_is_rejected():
    token = jwt.encode({"sub": "owner-1", "type": SESSION_TOKEN_TYPE, "iss": "elsewhere"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    with pytest.raises(ValueError):
        decode_session_token(token)


def test_tampered_token_is_rejected():
    token = create_session_token("owner-1")["token"]

    with pytest.raises(ValueError):
        decode_session_token(token[:-2] + ("AA" if not token.endswith("AA") else "BB"))
