from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone as dt_timezone
from typing import Callable, Optional

from django.conf import settings
from django.db import close_old_connections
from django.utils import timezone

from . import windows
from .metrics import record_reconcile_metric
from .queues import default_scheduler

logger = logging.getLogger(__name__)

REFRESH_TASK = "window-status-refresh"
CLEANUP_TASK = "expired-window-cleanup"


class _PeriodicTask:
  def __init__(self, name: str, interval: float, func: Callable[[], object]):
    self.name = name
    self.interval = interval
    self.func = func
    self.thread: Optional[threading.Thread] = None
    self.last_run_at: Optional[datetime] = None
    self.last_error: Optional[str] = None
    self.run_count = 0

  def snapshot(self) -> dict:
    return {
        "name": self.name,
        "interval_seconds": self.interval,
        "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        "last_error": self.last_error,
        "run_count": self.run_count,
    }


class ReconciliationScheduler:
  """
  Process-local timer loop keeping window ``is_active`` flags fresh.

  Owns one daemon thread per periodic task. A failing tick is logged and the
  loop carries on with the next one. ``shutdown`` is safe to call repeatedly.
  """

  def __init__(
      self,
      refresh_interval: float = 300,
      cleanup_interval: float = 3600,
      cleanup_enabled: bool = False,
      refresh: Optional[Callable[[], object]] = None,
      cleanup: Optional[Callable[[], object]] = None,
  ):
    self._tasks = [_PeriodicTask(REFRESH_TASK, refresh_interval, refresh or windows.refresh_window_statuses)]
    if cleanup_enabled:
      # cleanup refreshes the flags itself before deleting anything
      self._tasks.append(_PeriodicTask(CLEANUP_TASK, cleanup_interval, cleanup or windows.purge_expired_windows))
    self._stop = threading.Event()
    self._lock = threading.Lock()
    self._running = False

  @property
  def running(self) -> bool:
    return self._running

  def start(self) -> None:
    with self._lock:
      if self._running:
        logger.warning("Reconciliation scheduler already running")
        return
      self._stop.clear()
      for task in self._tasks:
        task.thread = threading.Thread(
            target=self._loop,
            args=(task,),
            name=f"reconciler-{task.name}",
            daemon=True,
        )
        task.thread.start()
        logger.info("Scheduled %s every %ss", task.name, task.interval)
      self._running = True

  def _loop(self, task: _PeriodicTask) -> None:
    while not self._stop.wait(task.interval):
      close_old_connections()
      try:
        self._tick(task)
      finally:
        close_old_connections()

  def _tick(self, task: _PeriodicTask):
    logger.debug("Running scheduled %s", task.name)
    result = None
    try:
      result = task.func()
      task.last_error = None
    except Exception as exc:  # noqa: BLE001
      task.last_error = f"{exc.__class__.__name__}: {exc}"
      record_reconcile_metric(task.name, "failed")
      logger.exception("Scheduled %s failed", task.name)
    finally:
      task.last_run_at = timezone.now()
      task.run_count += 1
    return result

  def run_now(self, name: str):
    for task in self._tasks:
      if task.name == name:
        return self._tick(task)
    raise ValueError(f"Unknown reconciliation task '{name}'")

  def status(self) -> dict:
    return {
        "running": self._running,
        "task_count": len(self._tasks),
        "tasks": [task.snapshot() for task in self._tasks],
    }

  def shutdown(self, timeout: float = 5.0) -> None:
    with self._lock:
      if not self._running:
        return
      logger.info("Shutting down reconciliation scheduler")
      self._stop.set()
      threads = [task.thread for task in self._tasks if task.thread is not None]
      self._running = False
    for thread in threads:
      if thread is not threading.current_thread():
        thread.join(timeout)
    for task in self._tasks:
      task.thread = None


def build_reconciler() -> ReconciliationScheduler:
  return ReconciliationScheduler(
      refresh_interval=getattr(settings, "WINDOW_REFRESH_INTERVAL_SECONDS", 300),
      cleanup_interval=getattr(settings, "WINDOW_CLEANUP_INTERVAL_SECONDS", 3600),
      cleanup_enabled=getattr(settings, "WINDOW_CLEANUP_ENABLED", False),
  )


def _schedule_identifier(name: str) -> str:
  return f"reconcile:{name}"


def cancel_reconciliation_jobs() -> None:
  for name in (REFRESH_TASK, CLEANUP_TASK):
    try:
      default_scheduler.cancel(_schedule_identifier(name))
    except ValueError:
      continue


def register_reconciliation_jobs() -> list[str]:
  """Register the reconciliation tasks as interval jobs with rq-scheduler."""
  from .automation.tasks import purge_expired_windows_job, refresh_window_statuses_job

  cancel_reconciliation_jobs()
  jobs = [(REFRESH_TASK, refresh_window_statuses_job, getattr(settings, "WINDOW_REFRESH_INTERVAL_SECONDS", 300))]
  if getattr(settings, "WINDOW_CLEANUP_ENABLED", False):
    jobs.append(
        (CLEANUP_TASK, purge_expired_windows_job, getattr(settings, "WINDOW_CLEANUP_INTERVAL_SECONDS", 3600))
    )

  registered = []
  for name, func, interval in jobs:
    default_scheduler.schedule(
        scheduled_time=datetime.now(dt_timezone.utc),
        func=func,
        interval=int(interval),
        repeat=None,
        id=_schedule_identifier(name),
    )
    registered.append(_schedule_identifier(name))
  return registered
