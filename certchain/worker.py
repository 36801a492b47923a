"""Background worker process.

RUN:  python -m certchain.worker

Same image as the API, different command.  The worker:

  1. dispatches tasks from every registered queue to its handler;
  2. sweeps the whole pending journal every ``SWEEP_INTERVAL_S``, which
     covers tasks lost with a crashed API process or never enqueued
     because Redis was down at the time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from certchain.container import Services, build_services
from certchain.core.config import SETTINGS
from certchain.core.logging import setup_logging
from certchain.services.reconciliation import ReconcileOutcome
from certchain.services.task_queue import RECONCILIATION_QUEUE, Task

TaskHandler = Callable[[Services, dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("certchain.worker")

SWEEP_INTERVAL_S = 60.0
IDLE_SLEEP_S = 0.5

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(RECONCILIATION_QUEUE)
async def handle_credential_reconciliation(services: Services, payload: dict) -> None:
    fp = payload["fingerprint"]
    outcome = await services.reconciler.reconcile_one(fp)
    if outcome is ReconcileOutcome.SKIPPED:
        # Someone holds the lease; the periodic sweep retries later.
        logger.info("Fingerprint %s busy, left for the next sweep", fp)
    else:
        logger.info(
            "Reconciled %s: %s",
            payload.get("operation", "operation"),
            outcome,
            extra={"fingerprint": fp},
        )


async def process_task(services: Services, task: Task) -> bool:
    """Run one task.  Returns False if its handler raised."""
    handler = HANDLERS.get(task.queue)
    if handler is None:
        logger.error("No handler for queue [%s]; dropping task %s", task.queue, task.id)
        return False
    try:
        await handler(services, task.payload)
    except Exception:
        # The journal entry survives; the next sweep retries it.
        logger.exception("Task %s on [%s] failed", task.id, task.queue)
        return False
    logger.info("Task %s on [%s] completed", task.id, task.queue)
    return True


async def sweep(services: Services) -> None:
    try:
        report = await services.reconciler.reconcile_pending()
    except Exception:
        logger.exception("Reconciliation sweep failed")
        return
    if report.total:
        logger.info(
            "Sweep: completed=%d released=%d skipped=%d failed=%d",
            report.completed,
            report.released,
            report.skipped,
            report.failed,
        )


async def run_worker(
    services: Services,
    *,
    stop: asyncio.Event | None = None,
    sweep_interval: float = SWEEP_INTERVAL_S,
) -> None:
    """Poll all registered queues until ``stop`` is set."""
    queues = list(HANDLERS)
    logger.info("Worker started, listening on queues: %s", queues)
    last_sweep = float("-inf")

    while stop is None or not stop.is_set():
        if time.monotonic() - last_sweep >= sweep_interval:
            await sweep(services)
            last_sweep = time.monotonic()

        processed = 0
        for queue_name in queues:
            task = await services.task_queue.dequeue(queue_name, timeout=1)
            if task is None:
                continue
            await process_task(services, task)
            processed += 1

        if not processed:
            await asyncio.sleep(IDLE_SLEEP_S)

    logger.info("Worker stopped")


async def main() -> None:
    services = build_services(SETTINGS)
    try:
        await run_worker(services)
    finally:
        await services.close()


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(main())
