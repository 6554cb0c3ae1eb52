from __future__ import annotations

import argparse
import asyncio
import json
import os

import uvicorn

from keepalive.app import build_cycle, create_app
from keepalive.config import load_settings
from keepalive.log import configure_logging
from keepalive.orchestrator import PingCycle


async def run_once(settings, cycle: PingCycle | None = None) -> int:
    """Run a single cycle, print its summary JSON and return the exit code."""
    summary = await (cycle or build_cycle(settings)).run()
    print(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))
    if summary.last_status.startswith("Failed") or not summary.all_ok:
        return 1
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Keep-alive pinger")
    parser.add_argument(
        "--config",
        default=os.getenv("KEEPALIVE_CONFIG", "config/keepalive.yaml"),
        help="Path to optional YAML config (environment variables override it)",
    )
    parser.add_argument("--once", action="store_true", help="Run one ping cycle, print the summary and exit")
    parser.add_argument("--log-level", default=None, help="Logging level (INFO, WARNING, ...)")
    args = parser.parse_args()

    settings = load_settings(args.config)
    configure_logging(args.log_level or settings.log_level)

    if args.once:
        return asyncio.run(run_once(settings))

    app = create_app(settings)
    # uvicorn turns SIGINT/SIGTERM into the app shutdown event.
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="info")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
