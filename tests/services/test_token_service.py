from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from progress_engine.services import token_service


def test_minted_token_round_trips() -> None:
    token = token_service.create_access_token(sub="u-1", roles=["admin"])
    claims = token_service.decode_access_token(token)
    assert claims["sub"] == "u-1"
    assert claims["roles"] == ["admin"]
    assert claims["aud"] == token_service.AUDIENCE


def test_default_role_is_user() -> None:
    claims = token_service.decode_access_token(token_service.create_access_token(sub="u-1"))
    assert claims["roles"] == ["user"]


def _sign(payload: dict, key=None, algorithm: str = "ES256") -> str:
    return jwt.encode(payload, key or token_service._private_key, algorithm=algorithm)


def _claims(**overrides) -> dict:
    now = datetime.now(UTC)
    claims = {
        "sub": "u-1",
        "iss": token_service.ISSUER,
        "aud": token_service.AUDIENCE,
        "iat": now,
        "exp": now + timedelta(minutes=5),
    }
    claims.update(overrides)
    return claims


def test_expired_token_rejected() -> None:
    past = datetime.now(UTC) - timedelta(minutes=1)
    with pytest.raises(jwt.ExpiredSignatureError):
        token_service.decode_access_token(_sign(_claims(exp=past)))


def test_wrong_audience_rejected() -> None:
    with pytest.raises(jwt.InvalidAudienceError):
        token_service.decode_access_token(_sign(_claims(aud="some-other-service")))


def test_foreign_key_rejected() -> None:
    stranger = ec.generate_private_key(ec.SECP256R1())
    with pytest.raises(jwt.InvalidSignatureError):
        token_service.decode_access_token(_sign(_claims(), key=stranger))


def test_hs256_token_rejected() -> None:
    forged = jwt.encode(_claims(), "shared-secret", algorithm="HS256")
    with pytest.raises(jwt.InvalidAlgorithmError):
        token_service.decode_access_token(forged)


def test_missing_subject_rejected() -> None:
    claims = _claims()
    del claims["sub"]
    with pytest.raises(jwt.MissingRequiredClaimError):
        token_service.decode_access_token(_sign(claims))
