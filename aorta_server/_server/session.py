from __future__ import annotations


SESSION_COOKIE = "aorta_session"
SESSION_TTL_SECONDS = 7 * 24 * 60 * 60


def build_session_cookie(token: str, *, secure: bool = False, expires_immediately: bool = False) -> str:
    parts = [f"{SESSION_COOKIE}={token}", "Path=/", "HttpOnly", "SameSite=Lax"]
    if secure:
        parts.append("Secure")
    if expires_immediately:
        parts.append("Max-Age=0")
    return "; ".join(parts)
