from __future__ import annotations

import logging
import mimetypes
import re
from html import escape
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

from .. import access, digesters, store
from ..auth import parse_cookie_header
from ..errors import AortaError, NoIdentity
from ..lifecycle import Executor
from ..notify import Notifier
from ..templating import render
from . import api_get, api_post
from .jsonutil import json_bytes
from .session import SESSION_COOKIE


logger = logging.getLogger(__name__)

PAGES_DIR = Path(__file__).resolve().parent.parent / "pages"

_MARKUP_RE = re.compile(r"<[^>]*>")

INTERNAL_MESSAGE = "The server could not complete the request. The problem has been logged."


def strip_markup(text: str) -> str:
    return _MARKUP_RE.sub("", text)


class AortaHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(
        self,
        server_address,
        RequestHandlerClass,
        data_dir: Path,
        *,
        notifier: Notifier | None = None,
        executor: Executor | None = None,
        digester_registry: Mapping[str, digesters.Digester] | None = None,
        templates_dir: Path | None = None,
        pages_dir: Path | None = None,
        cookie_secure: bool = False,
    ):
        super().__init__(server_address, RequestHandlerClass)
        self.data_dir = Path(data_dir)
        store.init_store(self.data_dir)
        self.notifier = notifier
        self.executor = executor
        self.digesters = digesters.registry() if digester_registry is None else dict(digester_registry)
        self.templates_dir = templates_dir or digesters.TEMPLATES_DIR
        self.pages_dir = pages_dir or PAGES_DIR
        self.cookie_secure = cookie_secure


class Handler(BaseHTTPRequestHandler):
    server: AortaHTTPServer  # type: ignore[assignment]

    def log_message(self, fmt, *args):
        logger.info("%s %s", self.address_string(), fmt % args)

    def _send_bytes(self, status: int, body: bytes, content_type: str, headers: dict[str, str] | None = None) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        if headers:
            for k, v in headers.items():
                self.send_header(k, v)
        self.end_headers()
        self.wfile.write(body)

    def _send_json(self, status: int, payload: Any, headers: dict[str, str] | None = None) -> None:
        self._send_bytes(status, json_bytes(payload), "application/json; charset=utf-8", headers)

    def _send_html(self, status: int, html: str, location: str | None = None) -> None:
        headers = {"Content-Location": location} if location else None
        self._send_bytes(status, html.encode("utf-8"), "text/html; charset=utf-8", headers)

    def _send_empty(self, status: int, headers: dict[str, str] | None = None) -> None:
        self.send_response(status)
        if headers:
            for k, v in headers.items():
                self.send_header(k, v)
        self.end_headers()

    def _wants_html(self) -> bool:
        return "text/html" in self.headers.get("Accept", "")

    def _send_error(self, status: int, code: str, message: str) -> None:
        if self._wants_html():
            page = (self.server.pages_dir / "error.html").read_text(encoding="utf-8")
            self._send_html(status, render(page, {"errorMessage": escape(message).replace("\n", "<br>")}))
            return
        self._send_json(status, {"error": code, "message": strip_markup(message)})

    def _send_done(self, status: int, payload: Any, message: str) -> None:
        """Answer a successful form post: a page for browsers, the JSON payload for clients."""
        if not self._wants_html():
            self._send_json(status, payload)
            return
        page = (self.server.pages_dir / "done.html").read_text(encoding="utf-8")
        self._send_html(status, render(page, {"doneMessage": escape(message)}), "/aorta/done.html")

    def _session_token(self) -> str | None:
        return parse_cookie_header(self.headers.get("Cookie")).get(SESSION_COOKIE)

    def _authorize(self, resource_type: str, operation: str, payload: dict[str, Any] | None = None) -> str:
        """Return the caller's identity if they may perform ``operation`` on ``resource_type``.

        Credentials in the body win over the session cookie.
        """
        payload = payload or {}
        identity = payload.get("userName")
        secret = payload.get("authCode")
        with store.connect(self.server.data_dir) as conn:
            if identity or secret:
                return access.require(conn, resource_type, operation, identity, secret)
            token = self._session_token()
            if not token:
                raise NoIdentity()
            verdict = access.authorize_session(conn, resource_type, operation, token)
        if not verdict.allowed:
            raise access.denial_error(verdict)
        return str(verdict.identity)

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        if parsed.path.startswith("/api/"):
            self._dispatch(api_get.handle, parsed.path, parsed.query)
            return
        self._dispatch(type(self)._handle_page_get, parsed.path, parsed.query)

    def do_POST(self) -> None:
        parsed = urlparse(self.path)
        if not parsed.path.startswith("/api/"):
            self._send_error(HTTPStatus.NOT_FOUND, "not_found", f"Invalid request {parsed.path}")
            return
        self._dispatch(api_post.handle, parsed.path, parsed.query)

    def _dispatch(self, handle, path: str, query: str) -> None:
        try:
            if handle(self, path, query):
                return
            self._send_error(HTTPStatus.NOT_FOUND, "not_found", f"Invalid request {path}")
        except AortaError as e:
            logger.info("%s %s refused: %s", self.command, path, e.code)
            self._send_error(e.status, e.code, e.user_message)
        except Exception:
            logger.exception("%s %s failed", self.command, path)
            self._send_error(HTTPStatus.INTERNAL_SERVER_ERROR, "internal_error", INTERNAL_MESSAGE)

    def _handle_page_get(self, path: str, query: str) -> bool:
        path = path.rstrip("/")
        if path in ("/aorta/upload", "/aorta/upload.html"):
            page = (self.server.pages_dir / "upload.html").read_text(encoding="utf-8")
            self._send_html(HTTPStatus.OK, render(page, {}), "/aorta/upload.html")
            return True

        if path in ("", "/aorta", "/aorta/index.html"):
            with store.connect(self.server.data_dir) as conn:
                script_names = store.list_keys(conn, "script")
                batch_names = store.list_keys(conn, "batch")
            page = (self.server.pages_dir / "index.html").read_text(encoding="utf-8")
            values = {
                "scriptListSize": len(script_names),
                "batchListSize": len(batch_names),
                "scriptOptions": "\n".join(f"<option>{n}</option>" for n in script_names),
                "batchOptions": "\n".join(f"<option>{n}</option>" for n in batch_names),
            }
            self._send_html(HTTPStatus.OK, render(page, values), "/aorta/index.html")
            return True

        if not path.startswith("/aorta/"):
            return False
        rel = path[len("/aorta/") :]
        base = self.server.pages_dir.resolve()
        candidate = (base / rel).resolve()
        if base not in candidate.parents or candidate.suffix == ".html":
            return False
        if not candidate.is_file():
            return False

        ctype, _ = mimetypes.guess_type(str(candidate))
        if not ctype:
            ctype = "application/octet-stream"
        data = candidate.read_bytes()
        self._send_bytes(HTTPStatus.OK, data, f"{ctype}; charset=utf-8" if ctype.startswith("text/") else ctype)
        return True
