import argparse
import logging
import sys
from pathlib import Path

from .config import ConfigError, ServerConfig
from .log import LOG_ENV_VAR, configure_logging
from .server import HttpServer

logger = logging.getLogger(__name__)

EXIT_BIND_FAILED = 1
EXIT_BAD_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    defaults = ServerConfig(root=Path("."))

    parser = argparse.ArgumentParser(prog="fileshover", description="A static file server.")
    parser.add_argument("-r", "--root", type=Path, required=True, metavar="PATH",
                        help="root directory to serve files from")
    parser.add_argument("-p", "--port", type=int, default=defaults.port,
                        help="port to listen on (default: %(default)s)")
    parser.add_argument("--host", default=defaults.host,
                        help="address to bind (default: %(default)s)")
    parser.add_argument("-w", "--workers", type=int, default=defaults.workers,
                        help="number of worker threads (default: %(default)s)")
    parser.add_argument("--queue-size", type=int, default=defaults.queue_size,
                        help="connections allowed to wait for a worker, 0 for no limit (default: %(default)s)")
    parser.add_argument("--timeout", type=float, default=defaults.read_timeout,
                        help="seconds to wait for a client to send its request (default: %(default)s)")
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"],
                        help=f"log verbosity, overrides ${LOG_ENV_VAR}")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = ServerConfig(
            root=args.root,
            host=args.host,
            port=args.port,
            workers=args.workers,
            queue_size=args.queue_size,
            read_timeout=args.timeout,
        ).validate()
        server = HttpServer(config)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return EXIT_BAD_CONFIG
    except OSError as e:
        logger.error("Could not listen on %s:%d: %s", args.host, args.port, e)
        return EXIT_BIND_FAILED

    server.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
