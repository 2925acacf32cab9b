import pytest

from agentdeck.services.session.session_reconciler import SessionReconciler


class _Manager:
    def __init__(self, result=True, error=None):
        self.result = result
        self.error = error
        self.calls = 0

    async def reconcile_sessions(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_reconcile_delegates_to_manager():
    manager = _Manager(result=True)
    reconciler = SessionReconciler(manager, interval_sec=30)
    assert await reconciler.reconcile() is True
    assert manager.calls == 1


@pytest.mark.asyncio
async def test_reconcile_swallows_manager_failure():
    reconciler = SessionReconciler(_Manager(error=RuntimeError("tmux gone")), interval_sec=30)
    assert await reconciler.reconcile() is False


@pytest.mark.asyncio
async def test_start_schedules_interval_job():
    reconciler = SessionReconciler(_Manager(), interval_sec=30)
    reconciler.start()
    try:
        jobs = reconciler.scheduler.get_jobs()
        assert len(jobs) == 1
        assert jobs[0].max_instances == 1
        assert reconciler.scheduler.running
    finally:
        reconciler.stop()


def test_start_disabled_with_zero_interval():
    reconciler = SessionReconciler(_Manager(), interval_sec=0)
    reconciler.start()
    assert reconciler.scheduler.get_jobs() == []
    assert not reconciler.scheduler.running
    reconciler.stop()
