"""Command line entry point that runs the API under uvicorn."""

from __future__ import annotations

import argparse
from dataclasses import replace

from loguru import logger

from .api import create_app
from .config import BackendSettings, load_settings
from .logs import configure_logging


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fishtank backend server")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--log-level", default=None)
    return parser.parse_args(argv)


def resolve_settings(args: argparse.Namespace) -> BackendSettings:
    settings = load_settings()
    overrides = {
        "host": args.host,
        "port": args.port,
        "log_level": args.log_level.upper() if args.log_level else None,
    }
    return replace(settings, **{key: value for key, value in overrides.items() if value is not None})


def main(argv: list[str] | None = None) -> None:
    import uvicorn

    settings = resolve_settings(parse_args(argv))
    configure_logging(settings.log_level)
    logger.info(
        f"Fishtank server on http://{settings.host}:{settings.port} "
        f"(ledger={'rpc' if settings.rpc_url else 'in-memory'}, proof mode={settings.proof_mode})"
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
