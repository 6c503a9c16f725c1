"""Tests for the in-process reconciler and the rq-scheduler job registration."""

import threading
from io import StringIO
from unittest.mock import Mock, patch

import pytest
from django.core.management import call_command

from academics.automation import purge_expired_windows_job, refresh_window_statuses_job
from academics.metrics import get_metrics_data
from academics.scheduler import (
    CLEANUP_TASK,
    REFRESH_TASK,
    ReconciliationScheduler,
    build_reconciler,
    register_reconciliation_jobs,
)


class TestReconciliationScheduler:
    """Ticks are driven through run_now so no background thread touches the database."""

    def test_failing_tick_is_logged_and_swallowed(self, caplog):
        refresh = Mock(side_effect=[RuntimeError("db down"), {"updated": 0}])
        reconciler = ReconciliationScheduler(refresh=refresh)

        with caplog.at_level("ERROR", logger="academics.scheduler"):
            assert reconciler.run_now(REFRESH_TASK) is None

        task = reconciler.status()["tasks"][0]
        assert task["last_error"] == "RuntimeError: db down"
        assert task["run_count"] == 1
        assert "Scheduled window-status-refresh failed" in caplog.text
        assert f'task="{REFRESH_TASK}",status="failed"' in get_metrics_data()

        assert reconciler.run_now(REFRESH_TASK) == {"updated": 0}
        task = reconciler.status()["tasks"][0]
        assert task["last_error"] is None
        assert task["run_count"] == 2
        assert task["last_run_at"] is not None

    def test_cleanup_task_only_when_enabled(self):
        assert ReconciliationScheduler(refresh=Mock()).status()["task_count"] == 1
        enabled = ReconciliationScheduler(refresh=Mock(), cleanup=Mock(return_value={}), cleanup_enabled=True)
        assert [t["name"] for t in enabled.status()["tasks"]] == [REFRESH_TASK, CLEANUP_TASK]
        assert enabled.run_now(CLEANUP_TASK) == {}

    def test_unknown_task(self):
        with pytest.raises(ValueError):
            ReconciliationScheduler(refresh=Mock()).run_now("nightly-backup")

    def test_start_and_idempotent_shutdown(self):
        refresh = Mock()
        reconciler = ReconciliationScheduler(refresh_interval=3600, refresh=refresh)

        reconciler.start()
        reconciler.start()
        assert reconciler.running is True
        assert reconciler.status()["running"] is True

        reconciler.shutdown(timeout=1)
        reconciler.shutdown(timeout=1)
        assert reconciler.running is False
        refresh.assert_not_called()

    def test_timer_keeps_ticking_after_a_failure(self):
        calls = []
        third_tick = threading.Event()

        def refresh():
            calls.append(1)
            if len(calls) >= 3:
                third_tick.set()
            if len(calls) == 1:
                raise RuntimeError("db down")
            return {"updated": 0}

        reconciler = ReconciliationScheduler(refresh_interval=0.01, refresh=refresh)
        reconciler.start()
        threads = [task.thread for task in reconciler._tasks]
        try:
            assert third_tick.wait(timeout=5)
        finally:
            reconciler.shutdown(timeout=2)

        task = reconciler.status()["tasks"][0]
        assert task["run_count"] >= 2
        assert task["last_error"] is None
        assert not any(thread.is_alive() for thread in threads)

    def test_shutdown_before_start(self):
        reconciler = ReconciliationScheduler(refresh=Mock())
        reconciler.shutdown()
        assert reconciler.running is False

    def test_build_from_settings(self, settings):
        settings.WINDOW_REFRESH_INTERVAL_SECONDS = 60
        settings.WINDOW_CLEANUP_ENABLED = True
        settings.WINDOW_CLEANUP_INTERVAL_SECONDS = 120
        status = build_reconciler().status()
        assert [(t["name"], t["interval_seconds"]) for t in status["tasks"]] == [
            (REFRESH_TASK, 60),
            (CLEANUP_TASK, 120),
        ]


class TestJobRegistration:
    @patch("academics.scheduler.default_scheduler")
    def test_registers_refresh_job(self, scheduler, settings):
        settings.WINDOW_CLEANUP_ENABLED = False
        settings.WINDOW_REFRESH_INTERVAL_SECONDS = 300

        ids = register_reconciliation_jobs()

        assert ids == ["reconcile:window-status-refresh"]
        scheduler.cancel.assert_any_call("reconcile:window-status-refresh")
        kwargs = scheduler.schedule.call_args.kwargs
        assert kwargs["func"] is refresh_window_statuses_job
        assert kwargs["interval"] == 300
        assert kwargs["repeat"] is None
        assert kwargs["id"] == "reconcile:window-status-refresh"

    @patch("academics.scheduler.default_scheduler")
    def test_registers_cleanup_job_when_enabled(self, scheduler, settings):
        settings.WINDOW_CLEANUP_ENABLED = True
        ids = register_reconciliation_jobs()
        assert ids == ["reconcile:window-status-refresh", "reconcile:expired-window-cleanup"]
        assert scheduler.schedule.call_count == 2


@pytest.mark.django_db
class TestAutomationJobs:
    def test_refresh_job_reports_summary(self):
        message = refresh_window_statuses_job()
        assert "updated=0" in message

    def test_purge_job_reports_summary(self):
        message = purge_expired_windows_job()
        assert "deleted=0" in message


@pytest.mark.django_db
def test_run_reconciler_once():
    out = StringIO()
    call_command("run_reconciler", "--once", stdout=out)
    assert "Window status refresh" in out.getvalue()
    assert "'updated': 0" in out.getvalue()
