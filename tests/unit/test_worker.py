import pytest

from waypoint.jobs import worker


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker(" Dummy ")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError, match="ledger_reconciliation"):
        await worker.run_worker("missing")


def test_job_name_from_environment(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["waypoint-worker"])
    monkeypatch.setenv("WORKER_JOB", "Ledger_Reconciliation")

    assert worker._resolve_job_name() == "ledger_reconciliation"


def test_job_name_defaults_to_reconciliation(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["waypoint-worker"])
    monkeypatch.delenv("WORKER_JOB", raising=False)

    assert worker._resolve_job_name() == worker.DEFAULT_JOB
