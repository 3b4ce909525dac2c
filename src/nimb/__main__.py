"""Command line entry point: ``python -m nimb`` or ``nimb``."""

import argparse
import logging

import uvicorn

from .config import HOST, PORT, configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the NIMB proxy")
    parser.add_argument("--host", default=HOST, help=f"bind address (default {HOST})")
    parser.add_argument("--port", type=int, default=PORT, help=f"port (default {PORT})")
    args = parser.parse_args()

    configure_logging()

    from .server import app

    logger.info(f"NIMB proxy on http://{args.host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
