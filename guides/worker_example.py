"""Example showing how to run a task worker against Redis."""

import asyncio
import os

from taskplane import ControlPlane
from taskplane.config import load_config


async def main():
    os.environ.setdefault("TASKPLANE_TRANSPORT", "redis")
    plane = ControlPlane.from_config(load_config())

    # Start worker
    await plane.queue.start()


if __name__ == "__main__":
    asyncio.run(main())
