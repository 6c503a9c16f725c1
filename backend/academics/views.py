import logging

from django.apps import apps
from django.conf import settings
from django.db import connection
from django.http import HttpResponse
from django.utils import timezone

from rq import Worker

from rest_framework import viewsets, status
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response

from . import balancer, evaluations, reports, windows
from .errors import ValidationError, WindowClosedError
from .metrics import get_metrics_data
from .models import Group, TRACKS
from .permissions import (
    CoordinatorPermissions,
    ScoreEntryPermissions,
    WindowPermissions,
    actor_role,
)
from .queues import redis_conn
from .scoring import COMPONENT_SUB_ASSESSMENT, EXTERNAL_COMPONENT
from .serializers import (
    AssignSerializer,
    AssignSoloSerializer,
    EvaluationRecordSerializer,
    ExternalScoreSerializer,
    InternalScoreSerializer,
    PublishSerializer,
    ReleaseSerializer,
    TrackSerializer,
    WindowCreateSerializer,
    WindowQuerySerializer,
    WindowSerializer,
    WindowUpdateSerializer,
    resolve_aliases,
)

logger = logging.getLogger(__name__)


def _ok(data=None, http_status=status.HTTP_200_OK):
    return Response({"success": True, "data": data}, status=http_status)


def _validated(serializer_class, data):
    serializer = serializer_class(data=resolve_aliases(data))
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


def _parse_bool(value, name):
    if value is None or value == "":
        return None
    lowered = str(value).strip().lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise ValidationError(f"{name} must be true or false")


def _require_open_assessment(group_id, component):
    """Reject score entry when ENFORCE_ASSESSMENT_WINDOWS is on and the matching window is closed."""
    if not getattr(settings, "ENFORCE_ASSESSMENT_WINDOWS", False):
        return
    track = Group.objects.filter(pk=group_id).values_list("track", flat=True).first()
    if track is None:
        # unknown group: the service layer reports it
        return
    sub_assessment = COMPONENT_SUB_ASSESSMENT[component]
    if not windows.is_open("assessment", track, sub_assessment):
        raise WindowClosedError(f"The {sub_assessment} assessment window for {track} is not open")


class WindowViewSet(viewsets.ViewSet):
    permission_classes = [WindowPermissions]

    def list(self, request):
        params = resolve_aliases(request.query_params)
        track = params.get("track") or None
        phase_kind = params.get("phase_kind") or None
        if track and track not in TRACKS:
            raise ValidationError(f"Invalid track '{track}'. Must be one of: {', '.join(TRACKS)}")
        is_active = _parse_bool(params.get("is_active"), "is_active")
        qs = windows.list_windows(track=track, phase_kind=phase_kind, is_active=is_active)
        return _ok(WindowSerializer(qs, many=True).data)

    def create(self, request):
        data = _validated(WindowCreateSerializer, request.data)
        window = windows.create_window(
            data["phase_kind"],
            data["track"],
            data.get("sub_assessment") or None,
            data["starts_at"],
            data["ends_at"],
            request.user,
        )
        return _ok(WindowSerializer(window).data, status.HTTP_201_CREATED)

    def retrieve(self, request, pk=None):
        return _ok(WindowSerializer(windows.get_window(pk)).data)

    def update(self, request, pk=None):
        data = _validated(WindowUpdateSerializer, request.data)
        window = windows.update_window(pk, starts_at=data.get("starts_at"), ends_at=data.get("ends_at"))
        return _ok(WindowSerializer(window).data)

    def partial_update(self, request, pk=None):
        return self.update(request, pk)

    def destroy(self, request, pk=None):
        windows.delete_window(pk)
        return _ok({"id": int(pk)})

    def bulk_destroy(self, request):
        if _parse_bool(request.query_params.get("expired"), "expired") is not True:
            raise ValidationError("Bulk delete only supports expired=true")
        deleted = windows.bulk_delete_expired()
        return _ok({"deleted": deleted})

    @action(detail=False, methods=["get"])
    def active(self, request):
        data = _validated(WindowQuerySerializer, request.query_params)
        window = windows.active_window(data["phase_kind"], data["track"], data.get("sub_assessment") or None)
        return _ok(
            {
                "is_open": window is not None,
                "window": WindowSerializer(window).data if window is not None else None,
            }
        )

    @action(detail=False, methods=["get"])
    def upcoming(self, request):
        track = request.query_params.get("track") or None
        if track and track not in TRACKS:
            raise ValidationError(f"Invalid track '{track}'. Must be one of: {', '.join(TRACKS)}")
        limit = request.query_params.get("limit")
        try:
            limit = int(limit) if limit else None
        except ValueError:
            raise ValidationError("limit must be an integer") from None
        upcoming = windows.list_upcoming(track=track, limit=limit)
        return _ok(WindowSerializer(upcoming, many=True).data)

    @action(detail=False, methods=["post"], url_path="update-statuses")
    def update_statuses(self, request):
        return _ok(windows.refresh_window_statuses())


@api_view(["PUT"])
@permission_classes([ScoreEntryPermissions])
def internal_score(request):
    data = _validated(InternalScoreSerializer, request.data)
    _require_open_assessment(data["group_id"], data["component"])
    record = evaluations.update_internal_component(
        data["student_id"],
        data["group_id"],
        data["component"],
        data["raw_score"],
        request.user.pk,
        actor_role(request.user),
    )
    return _ok(EvaluationRecordSerializer(record).data)


@api_view(["PUT"])
@permission_classes([ScoreEntryPermissions])
def external_score(request):
    data = _validated(ExternalScoreSerializer, request.data)
    _require_open_assessment(data["group_id"], EXTERNAL_COMPONENT)
    record = evaluations.update_external_component(
        data["student_id"],
        data["group_id"],
        data["raw_score"],
        request.user.pk,
        actor_role(request.user),
    )
    return _ok(EvaluationRecordSerializer(record).data)


@api_view(["PUT"])
@permission_classes([CoordinatorPermissions])
def publish(request):
    data = _validated(PublishSerializer, request.data)
    result = evaluations.set_published(data["record_ids"], data["is_published"], request.user.pk)
    return _ok(result)


@api_view(["POST"])
@permission_classes([CoordinatorPermissions])
def release(request):
    data = _validated(ReleaseSerializer, request.data)
    result = evaluations.bulk_release_for_track(data["track"], data.get("sub_assessment") or None, request.user.pk)
    return _ok(result)


@api_view(["GET"])
@permission_classes([ScoreEntryPermissions])
def faculty_evaluations(request):
    data = _validated(TrackSerializer, request.query_params)
    buckets = evaluations.evaluations_for_faculty(request.user.pk, data.get("track") or None)
    for bucket in buckets:
        bucket["records"] = EvaluationRecordSerializer(bucket["records"], many=True).data
    return _ok(buckets)


@api_view(["GET"])
@permission_classes([IsAuthenticated])
def my_evaluations(request):
    records = evaluations.evaluations_for_student(request.user.pk)
    return _ok(EvaluationRecordSerializer(records, many=True).data)


@api_view(["GET"])
@permission_classes([CoordinatorPermissions])
def evaluators(request):
    data = _validated(TrackSerializer, request.query_params)
    return _ok(balancer.list_assignable(data.get("track") or None))


@api_view(["POST"])
@permission_classes([CoordinatorPermissions])
def assign_evaluator(request):
    data = _validated(AssignSerializer, request.data)
    return _ok(balancer.assign(data["group_id"], data["evaluator_id"], request.user.pk))


@api_view(["POST"])
@permission_classes([CoordinatorPermissions])
def assign_solo_evaluator(request):
    data = _validated(AssignSoloSerializer, request.data)
    return _ok(balancer.assign_solo(data["student_id"], data["evaluator_id"], request.user.pk))


@api_view(["POST"])
@permission_classes([CoordinatorPermissions])
def auto_assign(request):
    data = _validated(TrackSerializer, request.data)
    return _ok(balancer.auto_assign(data.get("track") or None, request.user.pk))


@api_view(["POST"])
@permission_classes([CoordinatorPermissions])
def rebalance(request):
    return _ok(balancer.rebalance(request.user.pk))


@api_view(["GET"])
@permission_classes([CoordinatorPermissions])
def validate_assignments(request):
    data = _validated(TrackSerializer, request.query_params)
    return _ok(balancer.validate_constraints(data.get("track") or None))


@api_view(["GET"])
@permission_classes([CoordinatorPermissions])
def scheduler_status(request):
    reconciler = getattr(apps.get_app_config("academics"), "reconciler", None)
    if reconciler is None:
        return _ok({"running": False, "task_count": 0, "tasks": []})
    return _ok(reconciler.status())


@api_view(["GET"])
@permission_classes([CoordinatorPermissions])
def grade_report(request):
    track = request.query_params.get("track") or None
    requested_format = request.query_params.get("export", "csv").lower()
    if requested_format not in {"csv", "pdf"}:
        requested_format = "csv"
    published_only = bool(_parse_bool(request.query_params.get("published"), "published"))

    df = reports.build_grade_frame(track=track, published_only=published_only)
    stamp = timezone.now().strftime("%Y%m%d")
    filename = f"grades-{(track or 'all').lower()}-{stamp}"

    if requested_format == "pdf":
        title = f"Grade sheet: {track or 'all tracks'}"
        resp = HttpResponse(reports.grade_sheet_pdf(title, df), content_type="application/pdf")
        resp["Content-Disposition"] = f'attachment; filename="{filename}.pdf"'
        return resp

    resp = HttpResponse(reports.grade_sheet_csv(df), content_type="text/csv")
    resp["Content-Disposition"] = f'attachment; filename="{filename}.csv"'
    return resp


@api_view(["GET"])
@permission_classes([AllowAny])
def api_health(request):
    health = {"django": "Healthy", "database": "Unknown", "redis": "Unknown", "rq_workers": "Unknown"}

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1;")
        health["database"] = "Healthy"
    except Exception as exc:  # noqa: BLE001
        health["database"] = f"Unhealthy ({exc.__class__.__name__})"

    try:
        redis_conn.ping()
        health["redis"] = "Healthy"
    except Exception as exc:  # noqa: BLE001
        health["redis"] = f"Unhealthy ({exc.__class__.__name__})"

    try:
        workers = Worker.all(connection=redis_conn)
        if workers:
            health["rq_workers"] = f"Healthy ({len(workers)} online)"
        else:
            health["rq_workers"] = "Unhealthy (no workers registered)"
    except Exception as exc:  # noqa: BLE001
        health["rq_workers"] = f"Unknown ({exc.__class__.__name__})"

    reconciler = getattr(apps.get_app_config("academics"), "reconciler", None)
    health["reconciler"] = "Running" if reconciler is not None and reconciler.running else "Stopped"

    return _ok(health)


@api_view(["GET"])
@permission_classes([AllowAny])
def metrics_view(request):
    """Prometheus text-format metrics endpoint."""
    body = get_metrics_data()
    return HttpResponse(body, content_type="text/plain; version=0.0.4; charset=utf-8")
