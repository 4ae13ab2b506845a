#!/usr/bin/env python3
"""
Settlement worker.

Picks up external payments whose order is still open after the cashier screen
stopped waiting (soft timeout, API restart, cancelled poll) and re-checks them
with a short poll budget. Approved payments complete the stored order; other
terminal statuses are written back to the payment record so they drop out of
the pending list.

Run with `python -m backend.workers.settlement_worker`.
"""

import argparse
import asyncio
import sys
import time
import traceback

from ..app import repository
from ..app.config import settings
from ..app.errors import SettlementError
from ..app.logs import json_log
from ..app.payments import PaymentStatusClient
from ..app.settlement import SettlementPoller

WORKER_NAME = "settlement-worker"
MAX_ATTEMPTS_DEFAULT = 3


async def _read_mirror(payment_id: str):
    return await asyncio.to_thread(repository.read_settlement_status, payment_id)


async def settle_record(record: dict, poller: SettlementPoller, repo=repository) -> str:
    """
    Re-checks a single pending payment and returns its outcome:
    `completed`, `already_completed`, `pending`, or the terminal status.
    """
    payment_id = str(record["payment_id"])
    order_id = str(record["order_id"])
    result = await poller.poll(payment_id, order_id=order_id)

    if not result.terminal:
        return "pending"
    if result.source == "remote" and result.status != (record.get("status") or "").lower():
        await asyncio.to_thread(repo.upsert_settlement_status, payment_id, result.status)
    if not result.approved:
        json_log("info", "worker.settlement.not_approved", payment_id=payment_id, order_id=order_id, status=result.status)
        return result.status

    changed = await asyncio.to_thread(repo.mark_order_completed, order_id)
    json_log(
        "info",
        "worker.settlement.completed" if changed else "worker.settlement.already_completed",
        payment_id=payment_id,
        order_id=order_id,
        source=result.source,
    )
    return "completed" if changed else "already_completed"


async def process_pending(poller: SettlementPoller, limit: int, repo=repository) -> dict:
    records = await asyncio.to_thread(repo.list_pending_settlements, limit)
    outcomes: dict[str, int] = {}
    for record in records:
        try:
            outcome = await settle_record(record, poller, repo)
        except SettlementError as ex:
            # Still undetermined; the next pass tries again.
            json_log("warning", "worker.settlement.undetermined", payment_id=record.get("payment_id"), error=str(ex))
            outcome = "undetermined"
        outcomes[outcome] = outcomes.get(outcome, 0) + 1
    return outcomes


def build_poller(max_attempts: int, interval_seconds: float) -> SettlementPoller:
    client = PaymentStatusClient.from_settings(settings)
    return SettlementPoller(
        _read_mirror,
        client.acheck_status,
        max_attempts=max_attempts,
        interval_seconds=interval_seconds,
        transient_retries=settings.settlement_transient_retries,
        retry_backoff_seconds=settings.settlement_retry_backoff_seconds,
    )


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--limit", type=int, default=50)
    parser.add_argument("--max-attempts", type=int, default=MAX_ATTEMPTS_DEFAULT)
    parser.add_argument("--interval", type=float, default=settings.settlement_interval_seconds)
    parser.add_argument("--sleep", type=float, default=30.0)
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    args = parser.parse_args()

    poller = build_poller(args.max_attempts, args.interval)
    json_log("info", "worker.started", worker=WORKER_NAME, limit=args.limit, max_attempts=args.max_attempts)
    while True:
        did_work = False
        try:
            outcomes = asyncio.run(process_pending(poller, args.limit))
            if outcomes:
                json_log("info", "worker.pass", worker=WORKER_NAME, **outcomes)
            did_work = bool(outcomes.get("completed"))
        except Exception as ex:
            # Never crash the worker loop; a DB outage is retried on the next pass.
            json_log("error", "worker.pass.error", worker=WORKER_NAME, error=str(ex))
            traceback.print_exc(file=sys.stderr)

        if args.once:
            break

        time.sleep(0 if did_work else args.sleep)


if __name__ == "__main__":
    main()
