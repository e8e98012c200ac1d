from __future__ import annotations

import logging

from . import store
from .auth import BAD_IDENTITY, BAD_SECRET, MISSING_ROLE, NO_IDENTITY, NO_SECRET, Verdict, verify, verify_session
from .errors import AccessDenied, BadCredential, MissingRole, NoIdentity, NoSecret


logger = logging.getLogger(__name__)

SEE = "see"
CREATE = "create"
REMOVE = "remove"
OPERATIONS = (SEE, CREATE, REMOVE)

BAD_CREDENTIAL = "bad_credential"

# Role required per (resource type, operation). "" means any authenticated user.
ROLE_TABLE: dict[tuple[str, str], str] = {
    ("script", SEE): "",
    ("script", CREATE): "order",
    ("script", REMOVE): "manage",
    ("batch", SEE): "",
    ("batch", CREATE): "order",
    ("batch", REMOVE): "manage",
    ("order", SEE): "assign",
    ("order", CREATE): "order",
    ("order", REMOVE): "manage",
    ("job", SEE): "test",
    ("job", CREATE): "assign",
    ("job", REMOVE): "manage",
    ("report", SEE): "read",
    ("report", CREATE): "test",
    ("report", REMOVE): "manage",
    ("digest", SEE): "read",
    ("digest", CREATE): "read",
    ("digest", REMOVE): "manage",
    ("user", SEE): "manage",
    ("user", CREATE): "manage",
    ("user", REMOVE): "manage",
}

RESOURCE_TYPES = tuple(dict.fromkeys(t for t, _ in ROLE_TABLE))

_ERRORS = {
    NO_IDENTITY: NoIdentity,
    NO_SECRET: NoSecret,
    BAD_CREDENTIAL: BadCredential,
}


def required_role(resource_type: str, operation: str) -> str:
    try:
        return ROLE_TABLE[(resource_type, operation)]
    except KeyError:
        raise ValueError(f"unknown action: {operation} {resource_type}") from None


def _public(verdict: Verdict) -> Verdict:
    # Unknown user and wrong code look the same from outside.
    if verdict.reason in (BAD_IDENTITY, BAD_SECRET):
        logger.info("credential rejected for %r: %s", verdict.identity, verdict.reason)
        return Verdict.deny(BAD_CREDENTIAL)
    return verdict


def authorize(
    conn: store.StoreConnection,
    resource_type: str,
    operation: str,
    identity: str | None,
    secret: str | None,
) -> Verdict:
    return _public(verify(conn, identity, secret, required_role(resource_type, operation)))


def authorize_session(conn: store.StoreConnection, resource_type: str, operation: str, token: str | None) -> Verdict:
    return _public(verify_session(conn, token, required_role(resource_type, operation)))


def denial_error(verdict: Verdict) -> AccessDenied:
    if verdict.reason == MISSING_ROLE:
        return MissingRole(verdict.role)
    return _ERRORS.get(verdict.reason or "", BadCredential)()


def require(
    conn: store.StoreConnection,
    resource_type: str,
    operation: str,
    identity: str | None,
    secret: str | None,
) -> str:
    verdict = authorize(conn, resource_type, operation, identity, secret)
    if not verdict.allowed:
        raise denial_error(verdict)
    return str(verdict.identity)
