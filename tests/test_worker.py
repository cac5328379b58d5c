import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from watersurvey import worker
from watersurvey.domain.wallet.repository import WalletRepository
from watersurvey.domain.wallet.service import WalletService
from watersurvey.models_wallet import WalletTransactionStatus, WalletTransactionType


class FakePool:
    def __init__(self):
        self.jobs = []
        self.closed = False

    async def enqueue_job(self, name, *args, **kwargs):
        self.jobs.append((name, args, kwargs))
        return object()

    async def close(self):
        self.closed = True


@pytest.fixture
def worker_sessions(monkeypatch, session_factory):
    monkeypatch.setattr(worker, "SessionLocal", session_factory)


@pytest.fixture
def failed_credit(db, factory, monkeypatch):
    vendor = factory.vendor()

    def locked(db, vendor_id, amount):
        raise OperationalError("UPDATE vendors", {}, Exception("database is locked"))

    monkeypatch.setattr(WalletRepository, "increment_balance", staticmethod(locked))
    result = WalletService(db).credit_to_vendor_wallet(vendor.id, 300, WalletTransactionType.SITE_VISIT)
    db.commit()
    monkeypatch.undo()
    return result.transaction


def test_retry_is_enqueued_with_deterministic_job_id(monkeypatch):
    pool = FakePool()

    async def fake_create_pool(settings):
        return pool

    monkeypatch.setattr(worker, "create_pool", fake_create_pool)

    assert asyncio.run(worker.enqueue_credit_retry(42, delay_seconds=120)) is True
    [(name, args, kwargs)] = pool.jobs
    assert name == "retry_failed_credit_task"
    assert args == (42,)
    assert kwargs == {"_job_id": "wallet-retry:42", "_defer_by": 120}
    assert pool.closed


def test_enqueue_failure_is_swallowed(monkeypatch):
    async def unreachable(settings):
        raise ConnectionError("Redis unreachable")

    monkeypatch.setattr(worker, "create_pool", unreachable)

    assert asyncio.run(worker.enqueue_credit_retry(42)) is False


def test_retry_task_credits_failed_row(db, failed_credit, worker_sessions):
    result = asyncio.run(worker.retry_failed_credit_task({}, failed_credit.id))

    assert result == {"success": True, "error": None}
    db.refresh(failed_credit)
    assert failed_credit.status == WalletTransactionStatus.SUCCESS


def test_retry_task_skips_ineligible_rows(failed_credit, worker_sessions):
    asyncio.run(worker.retry_failed_credit_task({}, failed_credit.id))

    result = asyncio.run(worker.retry_failed_credit_task({}, failed_credit.id))

    assert result["success"] is False
    assert result["error"] == "Only failed transactions can be retried"


def test_sweep_task(failed_credit, worker_sessions):
    summary = asyncio.run(worker.sweep_failed_credits_task({}))

    assert summary == {"retried": 1, "succeeded": 1, "failed": 0}


def test_worker_settings_register_jobs():
    names = {f.__name__ for f in worker.WorkerSettings.functions}

    assert names == {"retry_failed_credit_task", "sweep_failed_credits_task", "dispatch_outbox_task"}
    assert len(worker.WorkerSettings.cron_jobs) == 2
