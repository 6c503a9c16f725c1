"""
Per-student evaluation records: score writes, derivation of converted scores
and totals, and the publish/freeze lifecycle.

Every write follows validate -> derive -> persist. Once a record is published
no score field may change until a coordinator unpublishes it.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Iterable, Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from .errors import (
    AuthorizationError,
    EngineError,
    FrozenError,
    NotFoundError,
    ValidationError,
)
from .metrics import record_score_metric
from .models import EvaluationRecord, Group, LegacySubmission, SUB_ASSESSMENTS, TRACKS
from .scoring import EXTERNAL_COMPONENT, INTERNAL_COMPONENTS, SCALES, derive_totals, validate_raw

logger = logging.getLogger(__name__)

ELEVATED_ROLES = ("coordinator", "admin")

STATE_UNSCORED = "unscored"
STATE_PARTIAL = "partially_scored"
STATE_FULL = "fully_scored"
STATE_PUBLISHED = "published"


def record_state(record: EvaluationRecord) -> str:
    if record.is_published:
        return STATE_PUBLISHED
    scored = [getattr(record, f"{c}_raw") is not None for c in SCALES]
    if all(scored):
        return STATE_FULL
    if any(scored):
        return STATE_PARTIAL
    return STATE_UNSCORED


def _same_id(left, right) -> bool:
    return left is not None and right is not None and str(left) == str(right)


def _get_group(group_id) -> Group:
    try:
        return Group.objects.select_related("project").get(pk=group_id)
    except (Group.DoesNotExist, ValueError, TypeError):
        raise NotFoundError("Group not found", code="GROUP_NOT_FOUND") from None


def _require_bound(group: Group) -> None:
    if not group.project_id or not group.internal_faculty_id:
        raise ValidationError("Group must be assigned to a project before evaluation", code="GROUP_NOT_BOUND")


def _require_member(group: Group, student_id) -> None:
    try:
        is_member = group.members.filter(pk=student_id).exists()
    except (ValueError, TypeError):
        is_member = False
    if not is_member:
        raise NotFoundError("Student is not a member of this group", code="STUDENT_NOT_IN_GROUP")


def _locked_record(group: Group, student_id) -> EvaluationRecord:
    record, created = EvaluationRecord.objects.select_for_update().get_or_create(
        student_id=student_id,
        group=group,
        project_id=group.project_id,
        defaults={
            "internal_evaluator_id": group.internal_faculty_id,
            "external_evaluator_id": group.external_evaluator_id,
        },
    )
    if created:
        logger.info("Created evaluation record %s for student %s in group %s", record.pk, student_id, group.code)
    return record


def _write_component(record: EvaluationRecord, component: str, raw) -> None:
    if record.is_published:
        raise FrozenError(
            "Grades have been published and cannot be modified. "
            "Please contact the coordinator if changes are needed."
        )
    setattr(record, f"{component}_raw", raw)
    derive_totals(record)
    record.save()


def update_internal_component(student_id, group_id, component: str, raw_score, actor_id, actor_role: str):
    if component not in INTERNAL_COMPONENTS:
        raise ValidationError(f"Component must be one of: {', '.join(INTERNAL_COMPONENTS)}")
    try:
        group = _get_group(group_id)
        _require_bound(group)
        if actor_role not in ELEVATED_ROLES and not (
            actor_role == "faculty" and _same_id(group.internal_faculty_id, actor_id)
        ):
            raise AuthorizationError("You are not authorized to evaluate this group")
        _require_member(group, student_id)
        raw = validate_raw(component, raw_score)

        with transaction.atomic():
            record = _locked_record(group, student_id)
            _write_component(record, component, raw)
    except EngineError as exc:
        record_score_metric(component, exc.code)
        raise

    record_score_metric(component, "success")
    logger.info(
        "%s score updated for student %s in group %s: %s -> %s",
        SCALES[component].label,
        student_id,
        group.code,
        raw,
        getattr(record, f"{component}_converted"),
    )
    return record


def update_external_component(student_id, group_id, raw_score, actor_id, actor_role: str):
    component = EXTERNAL_COMPONENT
    try:
        group = _get_group(group_id)
        _require_bound(group)
        _require_member(group, student_id)
        raw = validate_raw(component, raw_score)

        with transaction.atomic():
            record = _locked_record(group, student_id)
            if record.is_published:
                raise FrozenError(
                    "Grades have been published and cannot be modified. "
                    "Please contact the coordinator if changes are needed."
                )
            if actor_role not in ELEVATED_ROLES and not _same_id(record.external_evaluator_id, actor_id):
                raise AuthorizationError("You are not assigned as external evaluator for this student")
            _write_component(record, component, raw)
    except EngineError as exc:
        record_score_metric(component, exc.code)
        raise

    record_score_metric(component, "success")
    logger.info(
        "External score updated for student %s in group %s: %s -> %s",
        student_id,
        group.code,
        raw,
        record.external_converted,
    )
    return record


def _normalise_ids(record_ids: Iterable) -> list:
    if not record_ids:
        raise ValidationError("record_ids must be a non-empty list")
    ids = []
    for value in record_ids:
        try:
            ids.append(int(value))
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid record id '{value}'") from None
    return list(dict.fromkeys(ids))


def _require_records(ids: list) -> None:
    found = set(EvaluationRecord.objects.filter(pk__in=ids).values_list("pk", flat=True))
    missing = [pk for pk in ids if pk not in found]
    if missing:
        raise NotFoundError(f"Evaluation record(s) not found: {', '.join(str(pk) for pk in missing)}")


def publish(record_ids: Iterable, actor_id) -> dict:
    """
    Publish records in one UPDATE.

    Already-published records are skipped and keep their original
    ``published_at`` / ``published_by``.
    """
    ids = _normalise_ids(record_ids)
    _require_records(ids)
    now = timezone.now()
    with transaction.atomic():
        updated = EvaluationRecord.objects.filter(pk__in=ids, is_published=False).update(
            is_published=True,
            published_at=now,
            published_by_id=actor_id,
            updated_at=now,
        )
    logger.info("Published %s evaluation record(s) by %s (%s already published)", updated, actor_id, len(ids) - updated)
    return {"updated": updated, "skipped": len(ids) - updated}


def unpublish(record_ids: Iterable, actor_id) -> dict:
    ids = _normalise_ids(record_ids)
    _require_records(ids)
    with transaction.atomic():
        updated = EvaluationRecord.objects.filter(pk__in=ids, is_published=True).update(
            is_published=False,
            published_at=None,
            published_by=None,
            updated_at=timezone.now(),
        )
    logger.info("Unpublished %s evaluation record(s) by %s", updated, actor_id)
    return {"updated": updated, "skipped": len(ids) - updated}


def set_published(record_ids: Iterable, is_published: bool, actor_id) -> dict:
    if is_published:
        return publish(record_ids, actor_id)
    return unpublish(record_ids, actor_id)


def bulk_release_for_track(track: str, sub_assessment: Optional[str] = None, actor_id=None) -> dict:
    """
    Publish every unpublished record of the track's approved, project-bound groups.

    Without a sub-assessment this is the track's final release, which also
    releases graded legacy submissions while ``LEGACY_GRADE_RELEASE`` is on.
    """
    if track not in TRACKS:
        raise ValidationError(f"Invalid track '{track}'. Must be one of: {', '.join(TRACKS)}", code="INVALID_TRACK")
    if sub_assessment and sub_assessment not in SUB_ASSESSMENTS:
        raise ValidationError(f"Invalid sub-assessment '{sub_assessment}'")

    group_ids = list(
        Group.objects.filter(track=track, status="approved", project__isnull=False).values_list("pk", flat=True)
    )
    now = timezone.now()
    with transaction.atomic():
        released = EvaluationRecord.objects.filter(group_id__in=group_ids, is_published=False).update(
            is_published=True,
            published_at=now,
            published_by_id=actor_id,
            updated_at=now,
        )
        legacy = 0
        if not sub_assessment and getattr(settings, "LEGACY_GRADE_RELEASE", True):
            legacy = LegacySubmission.objects.filter(
                track=track,
                is_graded=True,
                is_grade_released=False,
            ).update(is_grade_released=True)

    logger.info(
        "Released %s grades for %s%s: %s evaluation record(s), %s legacy submission(s)",
        "final" if not sub_assessment else sub_assessment,
        track,
        "" if group_ids else " (no approved groups)",
        released,
        legacy,
    )
    return {
        "count": released + legacy,
        "evaluations": released,
        "legacy_submissions": legacy,
        "final": not sub_assessment,
    }


def evaluations_for_faculty(faculty_id, track: Optional[str] = None) -> list:
    """Records the user evaluates (internally or externally), bucketed by group."""
    qs = EvaluationRecord.objects.filter(
        Q(internal_evaluator_id=faculty_id) | Q(external_evaluator_id=faculty_id)
    ).select_related("student", "group", "project")
    if track:
        qs = qs.filter(project__track=track)

    buckets = OrderedDict()
    for record in qs.order_by("group_id", "created_at"):
        key = record.group_id or f"solo-{record.student_id}"
        if key not in buckets:
            buckets[key] = {
                "group_id": record.group_id,
                "group_code": record.group.code if record.group_id else None,
                "project_id": record.project_id,
                "project_title": record.project.title,
                "track": record.project.track,
                "records": [],
            }
        buckets[key]["records"].append(record)
    return list(buckets.values())


def evaluations_for_student(student_id) -> list:
    return list(
        EvaluationRecord.objects.filter(student_id=student_id, is_published=True)
        .select_related("group", "project")
        .order_by("-created_at")
    )
