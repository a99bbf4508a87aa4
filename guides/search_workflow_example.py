"""Example: dispatch a search workflow and drain it in one process."""

import asyncio
import logging

from taskplane import ControlPlane
from taskplane.config import load_config


async def main():
    logging.basicConfig(level=logging.INFO)
    plane = ControlPlane.from_config(load_config())

    workflow = await plane.dispatcher.create_workflow("Search for trace execution logs")
    print(f"Dispatched workflow {workflow.id} (trace {workflow.trace_id})")

    # With the in-memory transport the jobs only exist in this process
    await plane.queue.run_until_idle()

    workflow = await plane.dispatcher.get_workflow(workflow.id)
    print(f"Final status: {workflow.status.value}")
    for entry in await plane.dispatcher.list_logs(workflow.id):
        print(f"  {entry.event_type}: {entry.details}")


if __name__ == "__main__":
    asyncio.run(main())
