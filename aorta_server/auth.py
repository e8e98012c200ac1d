from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Any

from . import store
from .ids import is_valid_id


ROLES = ("order", "assign", "test", "manage", "read")

NO_IDENTITY = "no_identity"
NO_SECRET = "no_secret"
BAD_IDENTITY = "bad_identity"
BAD_SECRET = "bad_secret"
MISSING_ROLE = "missing_role"


@dataclass(frozen=True)
class Verdict:
    allowed: bool
    identity: str | None = None
    reason: str | None = None
    role: str | None = None

    @classmethod
    def allow(cls, identity: str) -> "Verdict":
        return cls(True, identity=identity)

    @classmethod
    def deny(cls, reason: str, *, identity: str | None = None, role: str | None = None) -> "Verdict":
        return cls(False, identity=identity, reason=reason, role=role)


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    roles: frozenset[str]
    email: str | None = None


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


def secret_digest(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def parse_cookie_header(cookie_header: str | None) -> dict[str, str]:
    if not cookie_header:
        return {}
    result: dict[str, str] = {}
    for part in cookie_header.split(";"):
        part = part.strip()
        if not part or "=" not in part:
            continue
        key, value = part.split("=", 1)
        result[key.strip()] = value.strip()
    return result


def lookup_user(conn: store.StoreConnection, identity: str) -> dict[str, Any] | None:
    if not is_valid_id(identity):
        return None
    return store.read_record(conn, "user", identity)


def user_roles(user: dict[str, Any]) -> frozenset[str]:
    roles = user.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return frozenset(str(r) for r in roles)


def to_authenticated(user: dict[str, Any]) -> AuthenticatedUser:
    email = user.get("email")
    return AuthenticatedUser(id=str(user["id"]), roles=user_roles(user), email=None if not email else str(email))


def _role_check(user: dict[str, Any], identity: str, required_role: str | None) -> Verdict:
    if required_role and required_role not in user_roles(user):
        return Verdict.deny(MISSING_ROLE, identity=identity, role=required_role)
    return Verdict.allow(identity)


def verify(conn: store.StoreConnection, identity: str | None, secret: str | None, required_role: str | None = None) -> Verdict:
    """Check a user-name/authorization-code pair, then the role it needs.

    Reads the user record on every call, so revocations apply to the next request.
    """
    if not identity:
        return Verdict.deny(NO_IDENTITY)
    if not secret:
        return Verdict.deny(NO_SECRET, identity=identity)
    # JSON bodies can carry numbers or lists here.
    if not isinstance(identity, str):
        return Verdict.deny(BAD_IDENTITY)
    if not isinstance(secret, str):
        return Verdict.deny(BAD_SECRET, identity=identity)
    user = lookup_user(conn, identity)
    if not user:
        return Verdict.deny(BAD_IDENTITY, identity=identity)
    if not hmac.compare_digest(str(user.get("authCode", "")).encode("utf-8"), secret.encode("utf-8")):
        return Verdict.deny(BAD_SECRET, identity=identity)
    return _role_check(user, identity, required_role)


def verify_session(conn: store.StoreConnection, token: str | None, required_role: str | None = None) -> Verdict:
    if not token:
        return Verdict.deny(NO_IDENTITY)
    session = store.get_session(conn, token)
    if not session:
        return Verdict.deny(BAD_SECRET)
    identity = str(session.get("identity", ""))
    user = lookup_user(conn, identity)
    if not user:
        return Verdict.deny(BAD_IDENTITY, identity=identity)
    current = secret_digest(str(user.get("authCode", "")))
    if not hmac.compare_digest(current, str(session.get("secretDigest", ""))):
        return Verdict.deny(BAD_SECRET, identity=identity)
    return _role_check(user, identity, required_role)
