"""Tests for window creation, overlap detection and status reconciliation."""

from datetime import datetime, timedelta, timezone as dt_timezone
from unittest.mock import patch

import pytest
from django.utils import timezone

from academics import windows
from academics.errors import ConflictError, NotFoundError, ValidationError
from academics.models import Window

pytestmark = pytest.mark.django_db


def _jan(day, year=2031):
    return datetime(year, 1, day, tzinfo=dt_timezone.utc)


class TestCreateWindow:
    """Validation and the inclusive overlap rule."""

    def test_creates_window(self, coordinator):
        window = windows.create_window("assessment", "IDP", "CLA-1", _jan(1), _jan(10), coordinator)
        assert window.pk is not None
        assert window.created_by == coordinator
        assert window.is_active is False

    def test_window_covering_now_starts_active(self, coordinator):
        now = timezone.now()
        window = windows.create_window(
            "proposal", "UROP", None, now - timedelta(hours=1), now + timedelta(hours=1), coordinator
        )
        assert window.is_active is True

    def test_end_must_follow_start(self, coordinator):
        with pytest.raises(ValidationError) as exc_info:
            windows.create_window("proposal", "IDP", None, _jan(10), _jan(1), coordinator)
        assert exc_info.value.code == "INVALID_DATES"

    def test_equal_start_and_end_rejected(self, coordinator):
        with pytest.raises(ValidationError):
            windows.create_window("proposal", "IDP", None, _jan(5), _jan(5), coordinator)

    def test_naive_datetimes_rejected(self, coordinator):
        with pytest.raises(ValidationError):
            windows.create_window("proposal", "IDP", None, datetime(2031, 1, 1), datetime(2031, 1, 2), coordinator)

    @pytest.mark.parametrize(
        "phase, track, sub",
        [
            ("exam", "IDP", None),
            ("proposal", "MSC", None),
            ("assessment", "IDP", None),
            ("assessment", "IDP", "CLA-9"),
            ("proposal", "IDP", "CLA-1"),
        ],
    )
    def test_invalid_keys(self, coordinator, phase, track, sub):
        with pytest.raises(ValidationError):
            windows.create_window(phase, track, sub, _jan(1), _jan(2), coordinator)

    def test_shared_boundary_overlaps(self, coordinator):
        windows.create_window("assessment", "IDP", "CLA-1", _jan(1), _jan(10), coordinator)
        with pytest.raises(ConflictError) as exc_info:
            windows.create_window("assessment", "IDP", "CLA-1", _jan(10), _jan(20), coordinator)
        assert exc_info.value.code == "WINDOW_OVERLAP"

    @pytest.mark.parametrize("start, end", [(5, 15), (3, 4), (1, 10)])
    def test_intersecting_windows_overlap(self, coordinator, start, end):
        windows.create_window("assessment", "IDP", "CLA-1", _jan(1), _jan(10), coordinator)
        with pytest.raises(ConflictError):
            windows.create_window("assessment", "IDP", "CLA-1", _jan(start), _jan(end), coordinator)

    def test_adjacent_day_does_not_overlap(self, coordinator):
        windows.create_window("assessment", "IDP", "CLA-1", _jan(1), _jan(9), coordinator)
        window = windows.create_window("assessment", "IDP", "CLA-1", _jan(10), _jan(20), coordinator)
        assert window.pk is not None

    def test_different_key_does_not_overlap(self, coordinator):
        windows.create_window("assessment", "IDP", "CLA-1", _jan(1), _jan(10), coordinator)
        windows.create_window("assessment", "IDP", "CLA-2", _jan(1), _jan(10), coordinator)
        windows.create_window("assessment", "UROP", "CLA-1", _jan(1), _jan(10), coordinator)
        assert Window.objects.count() == 3


class TestUpdateAndDelete:
    def test_update_rechecks_overlap(self, coordinator):
        windows.create_window("proposal", "IDP", None, _jan(1), _jan(10), coordinator)
        second = windows.create_window("proposal", "IDP", None, _jan(15), _jan(20), coordinator)
        with pytest.raises(ConflictError):
            windows.update_window(second.pk, starts_at=_jan(9))

    def test_update_ignores_itself(self, coordinator):
        window = windows.create_window("proposal", "IDP", None, _jan(1), _jan(10), coordinator)
        updated = windows.update_window(window.pk, ends_at=_jan(12))
        assert updated.ends_at == _jan(12)

    def test_update_rejects_inverted_interval(self, coordinator):
        window = windows.create_window("proposal", "IDP", None, _jan(5), _jan(10), coordinator)
        with pytest.raises(ValidationError):
            windows.update_window(window.pk, ends_at=_jan(2))

    def test_delete_unknown_window(self):
        with pytest.raises(NotFoundError):
            windows.delete_window(999)

    def test_bulk_delete_keeps_running_and_upcoming(self, coordinator):
        now = timezone.now()
        windows.create_window("proposal", "IDP", None, now - timedelta(days=10), now - timedelta(days=5), coordinator)
        running = windows.create_window(
            "application", "IDP", None, now - timedelta(days=1), now + timedelta(days=1), coordinator
        )
        upcoming = windows.create_window(
            "proposal", "IDP", None, now + timedelta(days=5), now + timedelta(days=10), coordinator
        )

        deleted = windows.bulk_delete_expired()

        assert deleted == 1
        assert set(Window.objects.values_list("pk", flat=True)) == {running.pk, upcoming.pk}


class TestReconciliation:
    """Flags are recomputed from the interval and the gate reads them when fresh."""

    def test_refresh_flips_stale_flags(self, coordinator):
        now = timezone.now()
        past = windows.create_window(
            "proposal", "IDP", None, now - timedelta(days=3), now - timedelta(days=2), coordinator
        )
        current = windows.create_window(
            "application", "IDP", None, now - timedelta(hours=1), now + timedelta(hours=1), coordinator
        )
        Window.objects.filter(pk=past.pk).update(is_active=True)
        Window.objects.filter(pk=current.pk).update(is_active=False)

        result = windows.refresh_window_statuses()

        assert result == {"updated": 2, "activated": 1, "deactivated": 1}
        past.refresh_from_db()
        current.refresh_from_db()
        assert past.is_active is False
        assert current.is_active is True
        assert current.flag_is_fresh()

    def test_refresh_tolerates_window_deleted_mid_run(self, coordinator):
        now = timezone.now()
        past = windows.create_window(
            "proposal", "IDP", None, now - timedelta(days=3), now - timedelta(days=2), coordinator
        )
        doomed = windows.create_window(
            "application", "IDP", None, now - timedelta(hours=1), now + timedelta(hours=1), coordinator
        )
        Window.objects.filter(pk=past.pk).update(is_active=True)
        Window.objects.filter(pk=doomed.pk).update(is_active=False)
        read_rows = Window.objects.values_list

        def read_then_delete(*fields):
            rows = list(read_rows(*fields))
            Window.objects.filter(pk=doomed.pk).delete()
            return rows

        with patch.object(Window.objects, "values_list", side_effect=read_then_delete):
            result = windows.refresh_window_statuses()

        assert result == {"updated": 1, "activated": 0, "deactivated": 1}
        assert list(Window.objects.values_list("pk", flat=True)) == [past.pk]
        past.refresh_from_db()
        assert past.is_active is False

    def test_refresh_is_idempotent(self, coordinator):
        now = timezone.now()
        windows.create_window("proposal", "IDP", None, now - timedelta(hours=1), now + timedelta(hours=1), coordinator)
        windows.refresh_window_statuses()
        assert windows.refresh_window_statuses()["updated"] == 0

    def test_purge_refreshes_then_deletes(self, coordinator):
        now = timezone.now()
        windows.create_window("proposal", "IDP", None, now - timedelta(days=3), now - timedelta(days=2), coordinator)
        result = windows.purge_expired_windows()
        assert result["deleted"] == 1
        assert Window.objects.count() == 0

    def test_is_open_uses_interval_before_first_refresh(self, coordinator):
        windows.create_window("assessment", "IDP", "CLA-1", _jan(1), _jan(10), coordinator)
        assert windows.is_open("assessment", "IDP", "CLA-1", now=_jan(5))
        assert windows.is_open("assessment", "IDP", "CLA-1", now=_jan(10))
        assert not windows.is_open("assessment", "IDP", "CLA-1", now=_jan(11))
        assert not windows.is_open("assessment", "IDP", "CLA-2", now=_jan(5))
        assert not windows.is_open("assessment", "UROP", "CLA-1", now=_jan(5))

    def test_is_open_trusts_fresh_flag(self, coordinator):
        now = timezone.now()
        windows.create_window("proposal", "IDP", None, now - timedelta(hours=1), now + timedelta(hours=1), coordinator)
        windows.refresh_window_statuses()
        assert windows.is_open("proposal", "IDP")
        assert windows.active_window("proposal", "IDP") is not None

    def test_absent_sub_assessment_only_matches_phase_windows(self, coordinator):
        now = timezone.now()
        windows.create_window(
            "assessment", "IDP", "CLA-1", now - timedelta(hours=1), now + timedelta(hours=1), coordinator
        )
        assert not windows.is_open("assessment", "IDP")


class TestListing:
    def test_list_filters_and_orders(self, coordinator):
        windows.create_window("proposal", "IDP", None, _jan(1), _jan(2), coordinator)
        windows.create_window("proposal", "IDP", None, _jan(5), _jan(6), coordinator)
        windows.create_window("proposal", "UROP", None, _jan(1), _jan(2), coordinator)

        listed = list(windows.list_windows(track="IDP"))

        assert [w.starts_at for w in listed] == [_jan(5), _jan(1)]

    def test_list_upcoming(self, coordinator):
        now = timezone.now()
        windows.create_window("proposal", "IDP", None, now - timedelta(days=2), now - timedelta(days=1), coordinator)
        soon = windows.create_window("proposal", "IDP", None, now + timedelta(days=1), now + timedelta(days=2), coordinator)
        windows.create_window("proposal", "IDP", None, now + timedelta(days=5), now + timedelta(days=6), coordinator)

        upcoming = windows.list_upcoming(track="IDP", limit=1)

        assert [w.pk for w in upcoming] == [soon.pk]
