from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import jwt
import structlog
from fastapi import HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .core.errors import AuthError

log = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class Principal:
    subject: str
    username: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)


class AccessGate:
    """Stateless bearer token check: chữ ký + hạn dùng (exp)."""

    def __init__(self, secret: Optional[str], algorithms: Sequence[str] = ("HS256",), leeway_s: int = 0):
        self.secret = secret
        self.algorithms: List[str] = list(algorithms)
        self.leeway_s = leeway_s

    @property
    def configured(self) -> bool:
        return bool(self.secret)

    def verify(self, token: str) -> Principal:
        if not self.configured:
            raise AuthError("token secret is not configured")
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=self.algorithms,
                leeway=self.leeway_s,
                options={"require": ["exp"]},
            )
        except jwt.InvalidTokenError as e:
            raise AuthError(str(e)) from e

        subject = claims.get("sub") or claims.get("id")
        if subject is None:
            raise AuthError("token has no subject")
        return Principal(subject=str(subject), username=claims.get("username"), claims=claims)


def issue_token(secret: str, subject: Any, username: Optional[str] = None, ttl: timedelta = timedelta(hours=1),
                algorithm: str = "HS256") -> str:
    """Token cùng dạng với identity service: {id, username, exp}."""
    now = datetime.now(timezone.utc)
    payload = {"id": subject, "sub": str(subject), "iat": now, "exp": now + ttl}
    if username is not None:
        payload["username"] = username
    return jwt.encode(payload, secret, algorithm=algorithm)


async def require_principal(request: Request) -> Principal:
    """FastAPI dependency; chạy trước khi job được tạo."""
    gate: AccessGate = request.app.state.gate
    creds: Optional[HTTPAuthorizationCredentials] = await bearer_scheme(request)
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=401, detail="Access denied. No token provided.")
    if not gate.configured:
        log.error("auth_not_configured")
        raise HTTPException(status_code=503, detail="Authentication is not configured.")
    try:
        return gate.verify(creds.credentials)
    except AuthError as e:
        log.info("auth_rejected", error=str(e))
        raise HTTPException(status_code=403, detail="Invalid token.")
