from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping


DEFAULT_PORT = 3005


def _int_or_none(v) -> int | None:
    s = str(v or "").strip()
    if not s:
        return None
    try:
        return int(s)
    except ValueError:
        raise ValueError(f"not an integer: {s!r}") from None


def _flag(v, default: bool) -> bool:
    s = str(v or "").strip().lower()
    if not s:
        return default
    return s in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class SmtpSettings:
    host: str = ""
    port: int | None = None
    use_tls: bool = True
    username: str = ""
    password: str = ""
    from_email: str = ""

    @property
    def configured(self) -> bool:
        return bool(self.host and self.port)


@dataclass(frozen=True)
class Settings:
    protocol: str = "http"
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    data_dir: Path = Path("data")
    key_path: Path | None = None
    cert_path: Path | None = None
    executor: str | None = None
    log_level: str = "INFO"
    cookie_secure: bool = False
    smtp: SmtpSettings = field(default_factory=SmtpSettings)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        key = str(env.get("KEY") or "").strip()
        cert = str(env.get("CERT") or "").strip()
        settings = cls(
            protocol=str(env.get("PROTOCOL") or "http").strip().lower(),
            host=str(env.get("HOST") or "127.0.0.1").strip(),
            port=_int_or_none(env.get("PORT")) or DEFAULT_PORT,
            data_dir=Path(str(env.get("AORTA_DATA") or "data").strip()),
            key_path=Path(key) if key else None,
            cert_path=Path(cert) if cert else None,
            executor=str(env.get("AORTA_EXECUTOR") or "").strip() or None,
            log_level=str(env.get("LOG_LEVEL") or "INFO").strip().upper(),
            cookie_secure=_flag(env.get("AORTA_COOKIE_SECURE"), False),
            smtp=SmtpSettings(
                host=str(env.get("SMTP_HOST") or "").strip(),
                port=_int_or_none(env.get("SMTP_PORT")),
                use_tls=_flag(env.get("SMTP_USE_TLS"), True),
                username=str(env.get("SMTP_USERNAME") or "").strip(),
                password=str(env.get("SMTP_PASSWORD") or ""),
                from_email=str(env.get("MAIL_FROM") or "").strip(),
            ),
        )
        settings.validate()
        return settings

    def with_overrides(self, **changes) -> "Settings":
        changes = {k: v for k, v in changes.items() if v is not None}
        settings = replace(self, **changes)
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.protocol not in ("http", "https"):
            raise ValueError(f"PROTOCOL must be http or https, not {self.protocol!r}")
        if self.protocol == "https" and (not self.key_path or not self.cert_path):
            raise ValueError("https needs both KEY and CERT")
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port out of range: {self.port}")
        if self.smtp.username and not self.smtp.password:
            raise ValueError("SMTP_PASSWORD is required when SMTP_USERNAME is set")
