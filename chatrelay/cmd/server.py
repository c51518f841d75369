from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from typing import Optional

from chatrelay.config import Settings, load_settings
from chatrelay.server.runtime import ServerRuntime

log = logging.getLogger("chatrelay.cmd.server")


async def _run(settings: Settings) -> None:
    runtime = ServerRuntime(settings)
    await runtime.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
    except NotImplementedError:
        pass

    log.info(
        "Server running (presence=%s, rooms=%s, max users=%d). Press Ctrl+C to stop.",
        settings.presence_mode,
        settings.room_assignment,
        settings.limits.max_users,
    )
    try:
        await stop_event.wait()
    finally:
        await runtime.stop()


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Real-time chat relay")
    parser.add_argument("--config", help="Path to server YAML config (default: configs/server.yaml if present)")
    parser.add_argument("--listen", help="host:port override")
    parser.add_argument("--presence-mode", choices=["anonymous", "roster"], help="override presence_mode")
    parser.add_argument(
        "--room-assignment", choices=["self-select", "gender-assigned"], help="override room_assignment"
    )
    parser.add_argument("--log-level", default="INFO", help="logging level (default: INFO)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings(
        args.config,
        overrides={
            "listen": args.listen,
            "presence_mode": args.presence_mode,
            "room_assignment": args.room_assignment,
        },
    )
    asyncio.run(_run(settings))


if __name__ == "__main__":
    main()
