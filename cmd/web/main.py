from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

import uvicorn

from anomaly_monitor.logging_utils import configure_logging
from webserver.app import ENV_FILE_VARIABLE

DEFAULT_PORT = 9093


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Serve the HTTP trigger that lets an external scheduler start anomaly monitor runs."
    )
    parser.add_argument("--host", default=os.getenv("WEB_HOST", "0.0.0.0"), help="Bind address (default: 0.0.0.0)")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("WEB_PORT", str(DEFAULT_PORT))),
        help=f"Port to listen on (default: {DEFAULT_PORT})",
    )
    parser.add_argument("--env-file", type=Path, help="Optional .env file with monitor settings.")
    parser.add_argument("--local", action="store_true", help="Bind to 127.0.0.1 only.")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload (for development)")
    parser.add_argument("--log-level", default=os.getenv("WEB_LOG_LEVEL", "info"), help="uvicorn log level")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    if args.env_file is not None:
        if not args.env_file.is_file():
            logging.error("Env file %s does not exist.", args.env_file)
            return 2
        # uvicorn builds the app through a factory, so hand the path over via the environment
        os.environ[ENV_FILE_VARIABLE] = str(args.env_file.resolve())

    if not os.getenv("TRIGGER_TOKEN"):
        logging.warning("TRIGGER_TOKEN is not set; POST /api/runs accepts unauthenticated requests.")

    config = uvicorn.Config(
        "webserver.app:create_app",
        factory=True,
        host="127.0.0.1" if args.local else args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
        log_config=None,
    )
    server = uvicorn.Server(config)
    try:
        server.run()
    except KeyboardInterrupt:
        logging.info("Web server interrupted by user.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
