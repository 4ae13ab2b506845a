"""
Bounded polling of an external (PIX) payment until it reaches a terminal status.

Each attempt reads the locally mirrored settlement record first: the payment
webhook writes that record independently and may land before our own remote
check does, so an `approved` mirror ends the poll without a remote round-trip.
Only then is the remote status endpoint asked.

The outer budget (max_attempts * interval) is a soft timeout: running out does
not cancel the payment, it only stops waiting. Callers get the last observed
non-terminal status with `terminal=False` and must re-check later (see
`backend/workers/settlement_worker.py`).
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Literal, Optional

from .errors import PersistenceFailure, SettlementCancelled, SettlementUndetermined, TransientSettlementError
from .logs import json_log

TERMINAL_STATUSES = frozenset({"approved", "rejected", "cancelled"})

DEFAULT_MAX_ATTEMPTS = 120
DEFAULT_INTERVAL_SECONDS = 5.0
DEFAULT_TRANSIENT_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 2.0


@dataclass(frozen=True)
class PaymentStatus:
    status: str
    raw: dict = field(default_factory=dict)

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class SettlementAttempt:
    payment_id: str
    order_id: Optional[str] = None
    status: str = "pending"
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def deadline(self) -> datetime:
        return self.started_at + timedelta(seconds=self.max_attempts * self.interval_seconds)

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts


@dataclass(frozen=True)
class SettlementResult:
    payment_id: str
    status: str
    attempts: int
    terminal: bool
    source: Literal["mirror", "remote"]
    raw: dict = field(default_factory=dict)

    @property
    def approved(self) -> bool:
        return self.status == "approved"


MirrorReader = Callable[[str], Awaitable[Optional[str]]]
RemoteChecker = Callable[[str], Awaitable[PaymentStatus]]
StatusCallback = Callable[[str], Any]


class SettlementPoller:
    def __init__(
        self,
        read_mirror: MirrorReader,
        check_remote: RemoteChecker,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        transient_retries: int = DEFAULT_TRANSIENT_RETRIES,
        retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
    ):
        self.read_mirror = read_mirror
        self.check_remote = check_remote
        self.max_attempts = max(1, int(max_attempts))
        self.interval_seconds = interval_seconds
        self.transient_retries = max(0, int(transient_retries))
        self.retry_backoff_seconds = retry_backoff_seconds

    @classmethod
    def from_settings(cls, read_mirror: MirrorReader, check_remote: RemoteChecker, settings) -> "SettlementPoller":
        return cls(
            read_mirror,
            check_remote,
            max_attempts=settings.settlement_max_attempts,
            interval_seconds=settings.settlement_interval_seconds,
            transient_retries=settings.settlement_transient_retries,
            retry_backoff_seconds=settings.settlement_retry_backoff_seconds,
        )

    async def poll(
        self,
        payment_id: str,
        *,
        order_id: Optional[str] = None,
        on_status_change: Optional[StatusCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> SettlementResult:
        attempt = SettlementAttempt(
            payment_id=payment_id,
            order_id=order_id,
            max_attempts=self.max_attempts,
            interval_seconds=self.interval_seconds,
        )
        seen: set[str] = set()

        def _observe(status: str) -> None:
            if status in seen:
                return
            seen.add(status)
            if on_status_change is not None:
                on_status_change(status)

        while True:
            result = await self._attempt_with_retries(attempt, cancel)
            if isinstance(result, SettlementResult):
                # Mirror fast path.
                _observe(result.status)
                json_log("info", "settlement.approved_via_mirror", payment_id=payment_id, attempts=attempt.attempts)
                return result

            last = result
            attempt = replace(attempt, attempts=attempt.attempts + 1, status=last.status)
            _observe(last.status)

            if last.terminal:
                json_log("info", "settlement.terminal", payment_id=payment_id, status=last.status, attempts=attempt.attempts)
                return SettlementResult(
                    payment_id=payment_id,
                    status=last.status,
                    attempts=attempt.attempts,
                    terminal=True,
                    source="remote",
                    raw=last.raw,
                )

            if attempt.exhausted:
                json_log(
                    "warning",
                    "settlement.undetermined",
                    payment_id=payment_id,
                    status=last.status,
                    attempts=attempt.attempts,
                    deadline=attempt.deadline,
                )
                return SettlementResult(
                    payment_id=payment_id,
                    status=last.status,
                    attempts=attempt.attempts,
                    terminal=False,
                    source="remote",
                    raw=last.raw,
                )

            await _suspend(self.interval_seconds, cancel, payment_id)

    async def _attempt_with_retries(self, attempt: SettlementAttempt, cancel: Optional[asyncio.Event]):
        failures = 0
        while True:
            _raise_if_cancelled(cancel, attempt.payment_id)
            try:
                return await self._attempt(attempt)
            except (TransientSettlementError, PersistenceFailure) as exc:
                failures += 1
                json_log(
                    "warning",
                    "settlement.check_failed",
                    payment_id=attempt.payment_id,
                    failures=failures,
                    error=str(exc),
                )
                if failures > self.transient_retries:
                    raise SettlementUndetermined(
                        payment_id=attempt.payment_id,
                        last_status=attempt.status,
                    ) from exc
                await _suspend(self.retry_backoff_seconds, cancel, attempt.payment_id)

    async def _attempt(self, attempt: SettlementAttempt):
        mirrored = await self.read_mirror(attempt.payment_id)
        if mirrored == "approved":
            return SettlementResult(
                payment_id=attempt.payment_id,
                status="approved",
                attempts=attempt.attempts,
                terminal=True,
                source="mirror",
            )
        return await self.check_remote(attempt.payment_id)


def _raise_if_cancelled(cancel: Optional[asyncio.Event], payment_id: str) -> None:
    if cancel is not None and cancel.is_set():
        raise SettlementCancelled(f"polling cancelled for payment {payment_id}")


async def _suspend(seconds: float, cancel: Optional[asyncio.Event], payment_id: str) -> None:
    if cancel is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(cancel.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return
    raise SettlementCancelled(f"polling cancelled for payment {payment_id}")
