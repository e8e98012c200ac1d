from __future__ import annotations

import argparse
import logging
import signal
import ssl
import threading
from importlib import import_module
from pathlib import Path

from . import store
from ._server.http_server import AortaHTTPServer, Handler
from .config import Settings
from .lifecycle import Executor
from .notify import Notifier


logger = logging.getLogger("aorta_server")


def load_executor(spec: str) -> Executor:
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ValueError(f"executor must look like module:function, not {spec!r}")
    executor = getattr(import_module(module_name), attr)
    if not callable(executor):
        raise ValueError(f"{spec} is not callable")
    return executor


def build_server(settings: Settings, handler_class=Handler) -> AortaHTTPServer:
    store.init_store(settings.data_dir)
    with store.connect(settings.data_dir) as conn:
        purged = store.purge_expired_sessions(conn)
    if purged:
        logger.info("purged %d expired session(s)", purged)

    httpd = AortaHTTPServer(
        (settings.host, settings.port),
        handler_class,
        data_dir=settings.data_dir,
        notifier=Notifier(settings.smtp, settings.data_dir / "outbox"),
        executor=load_executor(settings.executor) if settings.executor else None,
        cookie_secure=settings.cookie_secure,
    )
    if settings.protocol == "https":
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ctx.load_cert_chain(certfile=str(settings.cert_path), keyfile=str(settings.key_path))
        httpd.socket = ctx.wrap_socket(httpd.socket, server_side=True)
    return httpd


def _install_shutdown(httpd: AortaHTTPServer) -> None:
    def _shutdown(signum, frame):
        logger.info("received %s; shutting down", signal.Signals(signum).name)
        # shutdown() waits for serve_forever(), which runs on this thread.
        threading.Thread(target=httpd.shutdown, daemon=True).start()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="AORTA accessibility-test order server")
    parser.add_argument("--host")
    parser.add_argument("--port", type=int)
    parser.add_argument("--data", help="data directory (AORTA_DATA)")
    parser.add_argument("--protocol", choices=("http", "https"))
    parser.add_argument("--key", help="TLS private key (KEY)")
    parser.add_argument("--cert", help="TLS certificate (CERT)")
    parser.add_argument("--executor", help="test executor as module:function (AORTA_EXECUTOR)")
    parser.add_argument("--log-level")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        settings = Settings.from_env().with_overrides(
            host=args.host,
            port=args.port,
            data_dir=None if args.data is None else Path(args.data),
            protocol=args.protocol,
            key_path=None if args.key is None else Path(args.key),
            cert_path=None if args.cert is None else Path(args.cert),
            executor=args.executor,
            log_level=None if args.log_level is None else args.log_level.upper(),
        )
        logging.getLogger().setLevel(getattr(logging, settings.log_level, logging.INFO))
        httpd = build_server(settings)
        _install_shutdown(httpd)
        host, port = httpd.server_address[:2]
        logger.info("AORTA server listening at %s://%s:%s/aorta", settings.protocol, host, port)
        try:
            httpd.serve_forever()
        finally:
            httpd.server_close()
    except Exception:
        logger.exception("unhandled exception; AORTA is shut down")
        return 1
    logger.info("AORTA is shut down")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
