"""
External-evaluator assignment.

An evaluator's load is the number of groups plus solo students bound to them.
Assignment is greedy: each unbound item goes to the least-loaded eligible
evaluator who is not its internal faculty, ties broken by insertion order.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Count
from django.utils import timezone

from .errors import ConflictError, NotFoundError, ValidationError
from .metrics import record_assignment_metric
from .models import EvaluationRecord, Group, SoloEnrollment, User, TRACKS

logger = logging.getLogger(__name__)


@dataclass
class _Slot:
    kind: str  # "group" or "solo"
    obj: object
    internal_id: Optional[int]
    current_id: Optional[int]

    @property
    def label(self) -> str:
        if self.kind == "group":
            return self.obj.code
        return f"solo:{self.obj.student_id}"


def _check_track(track: Optional[str]) -> None:
    if track and track not in TRACKS:
        raise ValidationError(f"Invalid track '{track}'. Must be one of: {', '.join(TRACKS)}", code="INVALID_TRACK")


def _eligible_evaluators() -> list:
    return list(User.objects.filter(is_external_evaluator=True, is_active=True).order_by("pk"))


def _fairness_threshold() -> int:
    return int(getattr(settings, "EVALUATOR_FAIRNESS_THRESHOLD", 1))


def evaluator_loads(track: Optional[str] = None, evaluators: Optional[list] = None) -> dict:
    """Map evaluator pk -> bound groups + solo students, for eligible evaluators only."""
    _check_track(track)
    evaluators = evaluators if evaluators is not None else _eligible_evaluators()
    loads = {e.pk: 0 for e in evaluators}

    groups = Group.objects.filter(external_evaluator__isnull=False)
    solos = SoloEnrollment.objects.filter(external_evaluator__isnull=False)
    if track:
        groups = groups.filter(track=track)
        solos = solos.filter(track=track)

    for qs in (groups, solos):
        for row in qs.values("external_evaluator").annotate(n=Count("pk")):
            if row["external_evaluator"] in loads:
                loads[row["external_evaluator"]] += row["n"]
    return loads


def _gap(loads: dict) -> int:
    if not loads:
        return 0
    return max(loads.values()) - min(loads.values())


def list_assignable(track: Optional[str] = None) -> list:
    evaluators = _eligible_evaluators()
    loads = evaluator_loads(track, evaluators)
    return [
        {
            "evaluator_id": e.pk,
            "username": e.username,
            "name": e.get_full_name() or e.username,
            "email": e.email,
            "current_load": loads[e.pk],
        }
        for e in evaluators
    ]


def _get_evaluator(evaluator_id) -> User:
    try:
        evaluator = User.objects.get(pk=evaluator_id)
    except (User.DoesNotExist, ValueError, TypeError):
        raise NotFoundError("External evaluator not found", code="EVALUATOR_NOT_FOUND") from None
    if not evaluator.is_external_evaluator or not evaluator.is_active:
        raise ValidationError(f"User {evaluator.username} is not eligible as an external evaluator")
    return evaluator


def _bind_group(group: Group, evaluator_id: int, actor_id) -> int:
    """Write the group binding and propagate it to every member's evaluation record."""
    now = timezone.now()
    group.external_evaluator_id = evaluator_id
    group.external_assigned_at = now
    group.external_assigned_by_id = actor_id
    group.save(update_fields=["external_evaluator", "external_assigned_at", "external_assigned_by", "updated_at"])

    internal_id = group.internal_faculty_id
    member_ids = list(group.members.values_list("pk", flat=True)) if internal_id else []
    existing = set(
        EvaluationRecord.objects.filter(group=group, project_id=group.project_id).values_list("student_id", flat=True)
    )
    EvaluationRecord.objects.bulk_create(
        [
            EvaluationRecord(
                student_id=student_id,
                group=group,
                project_id=group.project_id,
                internal_evaluator_id=internal_id,
                external_evaluator_id=evaluator_id,
            )
            for student_id in member_ids
            if student_id not in existing
        ]
    )
    return EvaluationRecord.objects.filter(group=group, project_id=group.project_id).update(
        external_evaluator_id=evaluator_id,
        updated_at=now,
    )


def _bind_solo(enrollment: SoloEnrollment, evaluator_id: int, actor_id) -> int:
    now = timezone.now()
    enrollment.external_evaluator_id = evaluator_id
    enrollment.external_assigned_at = now
    enrollment.external_assigned_by_id = actor_id
    enrollment.save(update_fields=["external_evaluator", "external_assigned_at", "external_assigned_by", "updated_at"])
    internal_id = enrollment.internal_faculty_id
    if enrollment.project_id and internal_id:
        # group=NULL rows escape the unique constraint; the enrollment UPDATE above holds the row lock
        solo_records = EvaluationRecord.objects.filter(
            student_id=enrollment.student_id, group__isnull=True, project_id=enrollment.project_id
        )
        if not solo_records.exists():
            EvaluationRecord.objects.create(
                student_id=enrollment.student_id,
                project_id=enrollment.project_id,
                internal_evaluator_id=internal_id,
                external_evaluator_id=evaluator_id,
            )
    return EvaluationRecord.objects.filter(student_id=enrollment.student_id, group__isnull=True).update(
        external_evaluator_id=evaluator_id,
        updated_at=now,
    )


def _bind(slot: _Slot, evaluator_id: int, actor_id) -> int:
    if slot.kind == "group":
        return _bind_group(slot.obj, evaluator_id, actor_id)
    return _bind_solo(slot.obj, evaluator_id, actor_id)


def assign(group_id, evaluator_id, actor_id) -> dict:
    try:
        group = Group.objects.select_related("project").get(pk=group_id)
    except (Group.DoesNotExist, ValueError, TypeError):
        raise NotFoundError("Group not found", code="GROUP_NOT_FOUND") from None
    if not group.project_id or not group.internal_faculty_id:
        raise ValidationError(
            "Group must be assigned to a project before external evaluator assignment",
            code="GROUP_NOT_BOUND",
        )
    evaluator = _get_evaluator(evaluator_id)
    if group.internal_faculty_id == evaluator.pk:
        raise ValidationError("External evaluator cannot be the same as internal faculty", code="SELF_EVALUATION")
    if group.external_evaluator_id == evaluator.pk:
        raise ConflictError(f"{evaluator.username} is already the external evaluator of group {group.code}")

    with transaction.atomic():
        updated = _bind_group(group, evaluator.pk, actor_id)

    record_assignment_metric("manual")
    logger.info("External evaluator %s assigned to %s student(s) in group %s", evaluator.username, updated, group.code)
    return {"group_id": group.pk, "evaluator_id": evaluator.pk, "records_updated": updated}


def assign_solo(student_id, evaluator_id, actor_id) -> dict:
    try:
        enrollment = SoloEnrollment.objects.select_related("project").get(student_id=student_id)
    except (SoloEnrollment.DoesNotExist, ValueError, TypeError):
        raise NotFoundError("Solo student not found", code="SOLO_STUDENT_NOT_FOUND") from None
    if enrollment.student.project_groups.exists():
        raise ValidationError("Student belongs to a group; assign the evaluator to the group instead")
    evaluator = _get_evaluator(evaluator_id)
    if enrollment.internal_faculty_id == evaluator.pk:
        raise ValidationError("External evaluator cannot be the same as internal faculty", code="SELF_EVALUATION")
    if enrollment.external_evaluator_id == evaluator.pk:
        raise ConflictError(f"{evaluator.username} is already the external evaluator of this student")

    with transaction.atomic():
        updated = _bind_solo(enrollment, evaluator.pk, actor_id)

    record_assignment_metric("manual_solo")
    logger.info("External evaluator %s assigned to solo student %s", evaluator.username, student_id)
    return {"student_id": enrollment.student_id, "evaluator_id": evaluator.pk, "records_updated": updated}


def _group_slots(qs) -> list:
    return [_Slot("group", g, g.internal_faculty_id, g.external_evaluator_id) for g in qs.order_by("pk")]


def _solo_slots(qs) -> list:
    return [_Slot("solo", s, s.internal_faculty_id, s.external_evaluator_id) for s in qs.order_by("pk")]


def _unbound_slots(track: Optional[str]) -> list:
    groups = Group.objects.select_related("project").filter(
        status="approved",
        project__isnull=False,
        external_evaluator__isnull=True,
    )
    solos = SoloEnrollment.objects.select_related("project").filter(
        external_evaluator__isnull=True,
        student__project_groups__isnull=True,
    )
    if track:
        groups = groups.filter(track=track)
        solos = solos.filter(track=track)
    return _group_slots(groups) + _solo_slots(solos)


def _bound_slots() -> list:
    groups = Group.objects.select_related("project").filter(external_evaluator__isnull=False)
    solos = SoloEnrollment.objects.select_related("project").filter(external_evaluator__isnull=False)
    return _group_slots(groups) + _solo_slots(solos)


def _pick(slot: _Slot, evaluators: list, loads: dict, prefer_current: bool = False) -> Optional[int]:
    order = {e.pk: idx for idx, e in enumerate(evaluators)}
    candidates = [e.pk for e in evaluators if e.pk != slot.internal_id]
    if not candidates:
        return None

    def _rank(pk):
        keep = 0 if (prefer_current and pk == slot.current_id) else 1
        return (loads[pk], keep, order[pk])

    return min(candidates, key=_rank)


def auto_assign(track: Optional[str] = None, actor_id=None) -> dict:
    """
    Bind every unbound approved group and solo student of ``track`` (all tracks
    when omitted), one at a time, to the evaluator with the lowest running load.
    """
    _check_track(track)
    evaluators = _eligible_evaluators()
    slots = _unbound_slots(track)
    if not evaluators:
        logger.warning("Auto-assign found %s unassigned item(s) but no eligible evaluators", len(slots))
        return {"assigned": [], "skipped": [s.label for s in slots], "loads": {}}

    loads = evaluator_loads(track, evaluators)
    assigned, skipped = [], []
    with transaction.atomic():
        for slot in slots:
            if slot.kind == "group" and not (slot.obj.project_id and slot.internal_id):
                skipped.append(slot.label)
                continue
            chosen = _pick(slot, evaluators, loads)
            if chosen is None:
                skipped.append(slot.label)
                continue
            _bind(slot, chosen, actor_id)
            loads[chosen] += 1
            assigned.append({"kind": slot.kind, "id": slot.obj.pk, "label": slot.label, "evaluator_id": chosen})

    record_assignment_metric("auto", len(assigned))
    logger.info(
        "Auto-assigned %s item(s)%s; %s skipped; loads=%s",
        len(assigned),
        f" for {track}" if track else "",
        len(skipped),
        loads,
    )
    return {"assigned": assigned, "skipped": skipped, "loads": loads}


def rebalance(actor_id=None) -> dict:
    """
    Recompute every existing binding across all tracks with the greedy
    least-loaded rule, preferring to keep an item's evaluator on ties.

    The new plan is applied only when it does not widen the max-min load gap,
    so a rebalance never makes the distribution less fair.
    """
    evaluators = _eligible_evaluators()
    before = evaluator_loads(None, evaluators)
    if not evaluators:
        return {"applied": False, "changes": [], "loads_before": before, "loads_after": before}

    slots = _bound_slots()
    planned = {e.pk: 0 for e in evaluators}
    plan = []
    for slot in slots:
        chosen = _pick(slot, evaluators, planned, prefer_current=True)
        if chosen is None:
            plan.append((slot, slot.current_id))
            if slot.current_id in planned:
                planned[slot.current_id] += 1
            continue
        plan.append((slot, chosen))
        planned[chosen] += 1

    if _gap(planned) > _gap(before):
        logger.info("Rebalance plan skipped: gap %s would exceed current gap %s", _gap(planned), _gap(before))
        return {"applied": False, "changes": [], "loads_before": before, "loads_after": before}

    changes = []
    with transaction.atomic():
        for slot, chosen in plan:
            if chosen == slot.current_id:
                continue
            _bind(slot, chosen, actor_id)
            changes.append(
                {"kind": slot.kind, "id": slot.obj.pk, "label": slot.label, "from": slot.current_id, "to": chosen}
            )

    record_assignment_metric("rebalance", len(changes))
    logger.info("Rebalance moved %s binding(s); loads %s -> %s", len(changes), before, planned)
    return {"applied": True, "changes": changes, "loads_before": before, "loads_after": planned}


def validate_constraints(track: Optional[str] = None) -> dict:
    _check_track(track)
    evaluators = _eligible_evaluators()
    eligible_ids = {e.pk for e in evaluators}
    violations = []

    groups = Group.objects.select_related("project").filter(external_evaluator__isnull=False)
    solos = SoloEnrollment.objects.select_related("project").filter(external_evaluator__isnull=False)
    if track:
        groups = groups.filter(track=track)
        solos = solos.filter(track=track)

    for slot in _group_slots(groups) + _solo_slots(solos):
        if slot.current_id == slot.internal_id:
            violations.append(
                {
                    "type": "self_evaluation",
                    "kind": slot.kind,
                    "id": slot.obj.pk,
                    "evaluator_id": slot.current_id,
                    "message": f"{slot.label}: external evaluator is also the internal faculty",
                }
            )
        if slot.current_id not in eligible_ids:
            violations.append(
                {
                    "type": "ineligible_evaluator",
                    "kind": slot.kind,
                    "id": slot.obj.pk,
                    "evaluator_id": slot.current_id,
                    "message": f"{slot.label}: evaluator {slot.current_id} is not an eligible external evaluator",
                }
            )

    loads = evaluator_loads(track, evaluators)
    threshold = _fairness_threshold()
    if _gap(loads) > threshold:
        violations.append(
            {
                "type": "load_imbalance",
                "max_load": max(loads.values()),
                "min_load": min(loads.values()),
                "threshold": threshold,
                "message": f"Evaluator loads differ by {_gap(loads)} (allowed {threshold})",
            }
        )

    return {"is_valid": not violations, "violations": violations, "loads": loads}
