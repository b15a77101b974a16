from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import jwt
from jwt import InvalidTokenError


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    email: Optional[str]
    role: Optional[str]


def create_access_token(
    *,
    user_id: str,
    secret: str,
    email: str | None = None,
    role: str | None = None,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=30))
    payload: dict[str, object] = {"sub": str(user_id), "iat": now, "exp": exp}
    if email is not None:
        payload["email"] = email
    if role is not None:
        payload["role"] = role
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_access_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> TokenClaims:
    try:
        payload = jwt.decode(token, secret, algorithms=list(algorithms))
    except InvalidTokenError as exc:  # includes ExpiredSignatureError
        raise ValueError("invalid token") from exc

    sub = payload.get("sub")
    if not sub:
        raise ValueError("token missing sub")
    email = payload.get("email")
    role = payload.get("role")
    return TokenClaims(
        user_id=str(sub),
        email=str(email) if email else None,
        role=str(role) if role else None,
    )
