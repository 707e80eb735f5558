"""Command-line entry point: load config, configure logging, serve the webhook app."""

from __future__ import annotations

import argparse
import logging
import sys

from action_gate.config.loader import load_config
from action_gate.orchestration.runtime import ServiceRuntime
from action_gate.transport.http import create_app

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Serve the action-gate webhook and OAuth callback")
    p.add_argument("--config", "-c", required=True, help="Path to service YAML config")
    p.add_argument("--host", default=None, help="Bind address (overrides config)")
    p.add_argument("--port", "-p", type=int, default=None, help="Port (overrides config and PORT)")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    import uvicorn

    app = create_app(ServiceRuntime.from_config(config))
    host = args.host or config.host
    port = args.port or config.port
    logger.info("HTTP server listening on %s:%d", host, port)
    uvicorn.run(app, host=host, port=port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
