"""Run a discovery beacon and log every peer it sees.

Configured from the environment, e.g.::

    NATATORIUM_BEACON__INTERVAL=1 \
    NATATORIUM_BEACON__TRANSPORT__PORT=23456 \
    NATATORIUM_PAYLOAD='{"role": "worker"}' \
    python -m natatorium
"""

from __future__ import annotations

import asyncio
import sys

from loguru import logger

from natatorium.config.schema import Settings
from natatorium.discovery.beacon import Beacon


async def run(settings: Settings) -> None:
    beacon = Beacon(settings.beacon, settings.payload)
    beacon.on_hello_received(
        lambda peer: logger.info(
            "[natatorium] peer {} ({}) at {}:{}",
            peer["id"], peer["hostName"], peer["address"], peer["port"],
        )
    )
    await beacon.start()
    try:
        await asyncio.Event().wait()
    finally:
        beacon.stop()
        await beacon.transport.stop()


def main() -> None:
    settings = Settings()
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())
    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
