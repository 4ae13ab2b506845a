import asyncio

from backend.app.errors import TransientSettlementError
from backend.app.settlement import PaymentStatus, SettlementPoller
from backend.workers.settlement_worker import process_pending, settle_record


class _FakeRepo:
    def __init__(self, pending, completed=()):
        self.pending = list(pending)
        self.completed = set(completed)
        self.upserts = []

    def list_pending_settlements(self, limit):
        return self.pending[:limit]

    def mark_order_completed(self, order_id):
        if order_id in self.completed:
            return False
        self.completed.add(order_id)
        return True

    def upsert_settlement_status(self, payment_id, status, status_detail=None):
        self.upserts.append((payment_id, status))
        return {"payment_id": payment_id, "status": status}


def _poller(by_payment, mirror=None):
    mirror = mirror or {}

    async def read_mirror(payment_id):
        return mirror.get(payment_id)

    async def check_remote(payment_id):
        status = by_payment[payment_id]
        if isinstance(status, Exception):
            raise status
        return PaymentStatus(status=status)

    return SettlementPoller(read_mirror, check_remote, max_attempts=2, interval_seconds=0, transient_retries=1, retry_backoff_seconds=0)


def test_approved_remote_completes_stored_order():
    repo = _FakeRepo([])
    record = {"payment_id": "p1", "order_id": "o1", "status": "pending"}
    outcome = asyncio.run(settle_record(record, _poller({"p1": "approved"}), repo))
    assert outcome == "completed"
    assert repo.completed == {"o1"}
    assert repo.upserts == [("p1", "approved")]


def test_approved_mirror_on_completed_order_is_noop():
    repo = _FakeRepo([], completed={"o1"})
    record = {"payment_id": "p1", "order_id": "o1", "status": "approved"}
    outcome = asyncio.run(settle_record(record, _poller({"p1": "pending"}, mirror={"p1": "approved"}), repo))
    assert outcome == "already_completed"
    assert repo.upserts == []


def test_pass_counts_outcomes_and_survives_undetermined():
    repo = _FakeRepo(
        [
            {"payment_id": "p1", "order_id": "o1", "status": "pending"},
            {"payment_id": "p2", "order_id": "o2", "status": "pending"},
            {"payment_id": "p3", "order_id": "o3", "status": "pending"},
            {"payment_id": "p4", "order_id": "o4", "status": "pending"},
        ]
    )
    poller = _poller(
        {
            "p1": "approved",
            "p2": "rejected",
            "p3": "in_process",
            "p4": TransientSettlementError("gateway down"),
        }
    )
    outcomes = asyncio.run(process_pending(poller, limit=10, repo=repo))
    assert outcomes == {"completed": 1, "rejected": 1, "pending": 1, "undetermined": 1}
    assert repo.completed == {"o1"}
    assert ("p2", "rejected") in repo.upserts
