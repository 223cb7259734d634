from app.errors import ConfigurationError
from app.workers import reminder as reminder_worker


def test_dispatch_task_returns_counters(monkeypatch):
    counters = {"checked": 2, "sent": 1, "failed": 0, "skipped": 1, "timestamp": "2026-03-04T14:00:00+00:00"}

    async def fake_run_dispatch():
        return counters

    monkeypatch.setattr(reminder_worker, "run_dispatch", fake_run_dispatch)

    result = reminder_worker.dispatch_reminders.apply(args=())

    assert result.get() == counters


def test_configuration_error_is_not_retried(monkeypatch):
    calls = []

    async def fake_run_dispatch():
        calls.append(1)
        raise ConfigurationError("TELNYX_API_KEY and TELNYX_FROM_NUMBER must be set")

    monkeypatch.setattr(reminder_worker, "run_dispatch", fake_run_dispatch)

    result = reminder_worker.dispatch_reminders.apply(args=())

    assert result.failed()
    assert isinstance(result.result, ConfigurationError)
    assert len(calls) == 1


def test_unexpected_error_fails_the_task(monkeypatch):
    async def fake_run_dispatch():
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(reminder_worker, "run_dispatch", fake_run_dispatch)

    result = reminder_worker.dispatch_reminders.apply(args=())

    assert result.failed()
    assert isinstance(result.result, RuntimeError)
