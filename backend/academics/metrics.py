# backend/academics/metrics.py
from __future__ import annotations

from collections import Counter
from django.utils import timezone

_RECONCILE = Counter()     # keys: (task, status)
_RECONCILE_ROWS = Counter()  # keys: (task,) rows touched
_SCORES = Counter()        # keys: (component, status)
_ASSIGNMENTS = Counter()   # keys: (mode,)


def record_reconcile_metric(task: str, status: str, rows: int = 0) -> None:
    _RECONCILE[(task or "unknown", status or "unknown")] += 1
    _RECONCILE_ROWS[(task or "unknown",)] += rows or 0


def record_score_metric(component: str, status: str) -> None:
    _SCORES[(component or "unknown", status or "unknown")] += 1


def record_assignment_metric(mode: str, count: int = 1) -> None:
    _ASSIGNMENTS[(mode or "unknown",)] += count


def reset_metrics() -> None:
    for counter in (_RECONCILE, _RECONCILE_ROWS, _SCORES, _ASSIGNMENTS):
        counter.clear()


def get_metrics_data() -> str:
    # Prometheus text format
    lines = []
    lines.append("# HELP academics_reconcile_runs_total Reconciliation task runs by task and status")
    lines.append("# TYPE academics_reconcile_runs_total counter")
    for (task, status), value in sorted(_RECONCILE.items()):
        lines.append(f'academics_reconcile_runs_total{{task="{task}",status="{status}"}} {value}')

    lines.append("# HELP academics_reconcile_rows_total Windows updated or deleted by reconciliation")
    lines.append("# TYPE academics_reconcile_rows_total counter")
    for (task,), value in sorted(_RECONCILE_ROWS.items()):
        lines.append(f'academics_reconcile_rows_total{{task="{task}"}} {value}')

    lines.append("# HELP academics_score_updates_total Score writes by component and outcome")
    lines.append("# TYPE academics_score_updates_total counter")
    for (component, status), value in sorted(_SCORES.items()):
        lines.append(f'academics_score_updates_total{{component="{component}",status="{status}"}} {value}')

    lines.append("# HELP academics_evaluator_assignments_total External evaluator bindings written")
    lines.append("# TYPE academics_evaluator_assignments_total counter")
    for (mode,), value in sorted(_ASSIGNMENTS.items()):
        lines.append(f'academics_evaluator_assignments_total{{mode="{mode}"}} {value}')

    lines.append('# HELP academics_build_info Build info')
    lines.append('# TYPE academics_build_info gauge')
    lines.append(f'academics_build_info{{ts="{timezone.now().isoformat()}"}} 1')

    return "\n".join(lines) + "\n"
