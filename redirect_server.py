from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from flask import Flask, Request, Response, redirect, request

from redirect_table import ConfigError, RedirectTable

CONFIG_PATH = "/_config"
LOCAL_ADDRS = ("localhost", "127.0.0.1")
ROUTED_METHODS = ["GET", "PUT", "DELETE"]

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _default_port() -> int:
    try:
        return int(os.getenv("PORT", "4404"))
    except ValueError:
        return 4404


# ==========================
# Default settings, each one can be overridden on the command line.
#
# host/port: listen address. Keep it on loopback or behind a proxy that sets
#   X-Real-Ip, since that header decides who may change redirections.
# config: JSON file loaded at startup, {"redirections": {"/src": "/dst"}}.
# code: HTTP status sent with every redirect (3xx).
DEFAULTS = {
    "host": "localhost",
    "port": _default_port(),
    "config": "config.json",
    "code": 302,
    "log_level": "INFO",
}


@dataclass
class Args:
    host: str
    port: int
    config_path: Path
    code: int
    log_level: str


def redirect_code(value: str) -> int:
    try:
        code = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid status code: {value!r}")
    if not 300 <= code <= 399:
        raise argparse.ArgumentTypeError(f"{code} is not a redirection status (3xx)")
    return code


def parse_args(argv: list[str]) -> Args:
    parser = argparse.ArgumentParser(
        description="Fallback HTTP server that redirects known paths and 404s the rest."
    )
    parser.add_argument("--host", default=DEFAULTS["host"], help="Listen host")
    parser.add_argument(
        "--port", type=int, default=DEFAULTS["port"], help="Listen port"
    )
    parser.add_argument(
        "--config",
        default=DEFAULTS["config"],
        help="JSON configuration file with the initial redirections",
    )
    parser.add_argument(
        "--code",
        type=redirect_code,
        default=DEFAULTS["code"],
        help="Redirection status code (301, 302, 303, 307, ...)",
    )
    parser.add_argument(
        "--log-level",
        default=DEFAULTS["log_level"],
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )
    ns = parser.parse_args(argv)
    return Args(
        host=ns.host,
        port=ns.port,
        config_path=Path(ns.config),
        code=ns.code,
        log_level=ns.log_level,
    )


def real_addr(req: Request) -> str:
    """Client address: X-Real-Ip when the upstream proxy sets it, else the peer."""
    header_addr = req.headers.get("X-Real-Ip", "")
    if header_addr:
        return header_addr
    return req.remote_addr or "-"


def is_local(req: Request) -> bool:
    # The header is trusted as sent; the proxy in front must overwrite it.
    addr = real_addr(req).split(":", 1)[0]
    return addr in LOCAL_ADDRS


def _text(body: str, status: int = 200) -> Response:
    return Response(body, status=status, mimetype="text/plain")


def location_header(destination: str) -> str:
    # Header values cannot carry CR/LF; the stored destination is left as is.
    return destination.replace("\r", " ").replace("\n", " ")


def create_app(table: RedirectTable) -> Flask:
    """Build the Flask application serving ``table``."""
    app = Flask(__name__)

    def only_local(fn: Callable[[], Response]) -> Response:
        if not is_local(request):
            app.logger.warning(
                "%s unauthorized %s %s", real_addr(request), request.method, request.path
            )
            return _text("Unauthorized\n", 401)
        return fn()

    def get_redirect() -> Response:
        destination = table.lookup(request.path)
        if destination is None:
            app.logger.info("%s sent 404 for %s", real_addr(request), request.path)
            return _text("404 page not found\n", 404)
        app.logger.info(
            "%s redirected from %s to %s", real_addr(request), request.path, destination
        )
        return redirect(location_header(destination), code=table.status_code)

    def put_redirect() -> Response:
        destination = request.get_data(as_text=True)
        table.put(request.path, destination)
        app.logger.info(
            "%s added redirection from %s to %s",
            real_addr(request),
            request.path,
            destination,
        )
        return _text("")

    def delete_redirect() -> Response:
        table.delete(request.path)
        app.logger.info("%s removed redirection for %s", real_addr(request), request.path)
        return _text("")

    def get_config() -> Response:
        app.logger.info("%s exported configuration", real_addr(request))
        return Response(table.serialize() + "\n", mimetype="application/json")

    def set_config() -> Response:
        try:
            count = table.load_merge(request.get_data())
        except ConfigError as exc:
            app.logger.error("%s rejected configuration: %s", real_addr(request), exc)
            return _text(f"Error decoding JSON config: {exc}\n", 500)
        app.logger.info(
            "%s merged %d redirections from configuration", real_addr(request), count
        )
        return _text("Configuration successfully loaded.\n")

    def delete_config() -> Response:
        table.clear()
        app.logger.info("%s cleared configuration", real_addr(request))
        return _text("")

    def not_allowed() -> Response:
        app.logger.info(
            "%s method %s not allowed for %s",
            real_addr(request),
            request.method,
            request.path,
        )
        return _text("Method not allowed\n", 405)

    data_handlers = {
        "GET": get_redirect,
        "PUT": lambda: only_local(put_redirect),
        "DELETE": lambda: only_local(delete_redirect),
    }
    config_handlers = {
        "GET": get_config,
        "PUT": set_config,
        "DELETE": delete_config,
    }

    # Runs before routing errors are raised, so a remote caller gets 401 on
    # /_config whatever the method.
    @app.before_request
    def config_only_local() -> Optional[Response]:
        if request.path == CONFIG_PATH and not is_local(request):
            return only_local(not_allowed)
        return None

    # Werkzeug adds HEAD to every GET rule; it is refused like any other method.
    @app.route(CONFIG_PATH, methods=ROUTED_METHODS, provide_automatic_options=False)
    def config() -> Response:
        return config_handlers.get(request.method, not_allowed)()

    @app.route("/", methods=ROUTED_METHODS, provide_automatic_options=False)
    @app.route("/<path:_path>", methods=ROUTED_METHODS, provide_automatic_options=False)
    def data_path(_path: str = "") -> Response:
        return data_handlers.get(request.method, not_allowed)()

    @app.errorhandler(405)
    def method_not_allowed(_exc: Exception) -> Response:
        return not_allowed()

    return app


def main(argv: list[str]) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level, format=LOG_FORMAT)
    log = logging.getLogger("fourohfourfound")

    table = RedirectTable(status_code=args.code)
    try:
        table.load_file(args.config_path)
    except (OSError, ConfigError) as exc:
        log.error("cannot load %s: %s", args.config_path, exc)
        return 1
    log.info("%s: %d redirections loaded", args.config_path, len(table))

    app = create_app(table)
    app.run(host=args.host, port=args.port, threaded=True)
    return 0


def cli() -> int:
    return main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(cli())
