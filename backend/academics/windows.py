"""
Time-boxed administrative phases (windows) and the gate that decides whether a
phase is currently open for a track.

Windows are keyed by ``(phase_kind, track, sub_assessment or absent)``. Two
windows with the same key may not overlap; boundaries are inclusive, so a
window ending on Jan 10 and another starting on Jan 10 collide.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from django.db import transaction
from django.db.models import QuerySet
from django.utils import timezone

from .errors import ConflictError, NotFoundError, ValidationError
from .metrics import record_reconcile_metric
from .models import Window, PHASES, SUB_ASSESSMENTS, TRACKS

logger = logging.getLogger(__name__)

# Phases whose windows are opened per sub-assessment (CLA-1, CLA-2, ...).
SUB_ASSESSMENT_PHASES = ("submission", "assessment")


def _check_key(phase_kind: str, track: str, sub_assessment: Optional[str]) -> None:
    if phase_kind not in PHASES:
        raise ValidationError(f"Unknown phase '{phase_kind}'. Expected one of: {', '.join(PHASES)}")
    if track not in TRACKS:
        raise ValidationError(f"Unknown track '{track}'. Expected one of: {', '.join(TRACKS)}")
    if sub_assessment is not None and sub_assessment not in SUB_ASSESSMENTS:
        raise ValidationError(
            f"Unknown sub-assessment '{sub_assessment}'. Expected one of: {', '.join(SUB_ASSESSMENTS)}"
        )
    if phase_kind in SUB_ASSESSMENT_PHASES and not sub_assessment:
        raise ValidationError(f"A {phase_kind} window requires a sub-assessment")
    if phase_kind not in SUB_ASSESSMENT_PHASES and sub_assessment:
        raise ValidationError(f"A {phase_kind} window cannot target a sub-assessment")


def _check_interval(starts_at: datetime, ends_at: datetime) -> None:
    if not isinstance(starts_at, datetime) or not isinstance(ends_at, datetime):
        raise ValidationError("Window start and end must be datetimes")
    if timezone.is_naive(starts_at) or timezone.is_naive(ends_at):
        raise ValidationError("Window start and end must carry a timezone")
    if ends_at <= starts_at:
        raise ValidationError("Window end time must be after start time", code="INVALID_DATES")


def _same_key(phase_kind: str, track: str, sub_assessment: Optional[str]) -> QuerySet:
    qs = Window.objects.filter(phase_kind=phase_kind, track=track)
    if sub_assessment:
        return qs.filter(sub_assessment=sub_assessment)
    return qs.filter(sub_assessment__isnull=True)


def _check_overlap(
    phase_kind: str,
    track: str,
    sub_assessment: Optional[str],
    starts_at: datetime,
    ends_at: datetime,
    exclude_id: Optional[int] = None,
) -> None:
    # [a, b] and [c, d] overlap iff a <= d and c <= b
    clash = _same_key(phase_kind, track, sub_assessment).filter(starts_at__lte=ends_at, ends_at__gte=starts_at)
    if exclude_id is not None:
        clash = clash.exclude(pk=exclude_id)
    other = clash.first()
    if other is not None:
        raise ConflictError(f"Window overlaps with existing window {other.pk}", code="WINDOW_OVERLAP")


def get_window(window_id) -> Window:
    try:
        return Window.objects.get(pk=window_id)
    except (Window.DoesNotExist, ValueError, TypeError):
        raise NotFoundError("Window not found", code="WINDOW_NOT_FOUND") from None


def create_window(
    phase_kind: str,
    track: str,
    sub_assessment: Optional[str],
    starts_at: datetime,
    ends_at: datetime,
    actor,
) -> Window:
    sub_assessment = sub_assessment or None
    _check_key(phase_kind, track, sub_assessment)
    _check_interval(starts_at, ends_at)

    with transaction.atomic():
        _check_overlap(phase_kind, track, sub_assessment, starts_at, ends_at)
        window = Window(
            phase_kind=phase_kind,
            track=track,
            sub_assessment=sub_assessment,
            starts_at=starts_at,
            ends_at=ends_at,
            created_by=actor,
        )
        window.is_active = window.covers(timezone.now())
        window.save()

    logger.info("Created window %s by %s", window, getattr(actor, "pk", actor))
    return window


def update_window(window_id, starts_at: Optional[datetime] = None, ends_at: Optional[datetime] = None) -> Window:
    window = get_window(window_id)
    new_start = starts_at or window.starts_at
    new_end = ends_at or window.ends_at
    _check_interval(new_start, new_end)

    with transaction.atomic():
        _check_overlap(
            window.phase_kind,
            window.track,
            window.sub_assessment,
            new_start,
            new_end,
            exclude_id=window.pk,
        )
        window.starts_at = new_start
        window.ends_at = new_end
        window.is_active = window.covers(timezone.now())
        window.save(update_fields=["starts_at", "ends_at", "is_active", "updated_at"])

    logger.info("Updated window %s", window)
    return window


def delete_window(window_id) -> None:
    window = get_window(window_id)
    window.delete()
    logger.info("Deleted window %s", window_id)


def bulk_delete_expired(as_of: Optional[datetime] = None) -> int:
    """Delete windows that ended before ``as_of``. Upcoming and running windows are kept."""
    as_of = as_of or timezone.now()
    deleted, _ = Window.objects.filter(ends_at__lt=as_of).delete()
    if deleted:
        logger.info("Deleted %s expired window(s) (ended before %s)", deleted, as_of.isoformat())
    return deleted


def refresh_window_statuses(now: Optional[datetime] = None) -> dict:
    """
    Recompute ``is_active`` for every window and write back only the flags that flipped.

    Rows removed by a concurrent delete simply match nothing in the batch
    updates.
    """
    now = now or timezone.now()
    to_activate, to_deactivate = [], []
    for pk, starts_at, ends_at, is_active in Window.objects.values_list("pk", "starts_at", "ends_at", "is_active"):
        should_be_active = starts_at <= now <= ends_at
        if should_be_active and not is_active:
            to_activate.append(pk)
        elif is_active and not should_be_active:
            to_deactivate.append(pk)

    activated = Window.objects.filter(pk__in=to_activate).update(is_active=True) if to_activate else 0
    deactivated = Window.objects.filter(pk__in=to_deactivate).update(is_active=False) if to_deactivate else 0
    Window.objects.filter(updated_at__lte=now).update(status_refreshed_at=now)

    updated = activated + deactivated
    if updated:
        logger.info("Updated %s window statuses (%s activated, %s deactivated)", updated, activated, deactivated)
    record_reconcile_metric("window_status_refresh", "success", updated)
    return {"updated": updated, "activated": activated, "deactivated": deactivated}


def purge_expired_windows(now: Optional[datetime] = None) -> dict:
    now = now or timezone.now()
    refreshed = refresh_window_statuses(now)
    deleted = bulk_delete_expired(now)
    record_reconcile_metric("expired_window_cleanup", "success", deleted)
    return {"refreshed": refreshed["updated"], "deleted": deleted}


def active_window(
    phase_kind: str,
    track: str,
    sub_assessment: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[Window]:
    now = now or timezone.now()
    for window in _same_key(phase_kind, track, sub_assessment or None).order_by("starts_at"):
        if window.flag_is_fresh():
            if window.is_active:
                return window
        elif window.covers(now):
            return window
    return None


def is_open(
    phase_kind: str,
    track: str,
    sub_assessment: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    return active_window(phase_kind, track, sub_assessment, now) is not None


def list_windows(
    track: Optional[str] = None,
    phase_kind: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> QuerySet:
    refresh_window_statuses()
    qs = Window.objects.select_related("created_by")
    if track:
        qs = qs.filter(track=track)
    if phase_kind:
        qs = qs.filter(phase_kind=phase_kind)
    if is_active is not None:
        qs = qs.filter(is_active=is_active)
    return qs.order_by("-starts_at")


def list_upcoming(track: Optional[str] = None, limit: Optional[int] = None, now: Optional[datetime] = None):
    now = now or timezone.now()
    qs = Window.objects.filter(starts_at__gt=now)
    if track:
        qs = qs.filter(track=track)
    qs = qs.order_by("starts_at")
    if limit:
        qs = qs[:limit]
    return list(qs)
