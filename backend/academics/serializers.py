from rest_framework import serializers

from .evaluations import record_state
from .models import (
    EvaluationRecord,
    Window,
    PHASE_CHOICES,
    SUB_ASSESSMENT_CHOICES,
    TRACK_CHOICES,
)
from .scoring import INTERNAL_COMPONENTS, SCALES

# Older clients post camelCase names; each maps onto exactly one canonical field.
FIELD_ALIASES = {
    "windowType": "phase_kind",
    "phaseKind": "phase_kind",
    "projectType": "track",
    "assessmentType": "sub_assessment",
    "subAssessment": "sub_assessment",
    "startDate": "starts_at",
    "startsAt": "starts_at",
    "endDate": "ends_at",
    "endsAt": "ends_at",
    "isActive": "is_active",
    "studentId": "student_id",
    "groupId": "group_id",
    "conductScore": "raw_score",
    "rawScore": "raw_score",
    "recordIds": "record_ids",
    "isPublished": "is_published",
    "evaluatorId": "evaluator_id",
    "externalFacultyId": "evaluator_id",
}


def resolve_aliases(data) -> dict:
    """Return a plain dict with legacy keys renamed; a canonical key always wins over its alias."""
    if hasattr(data, "dict"):
        data = data.dict()
    resolved = {}
    for key, value in dict(data or {}).items():
        canonical = FIELD_ALIASES.get(key)
        if canonical is None:
            resolved[key] = value
        elif canonical not in data:
            resolved[canonical] = value
    return resolved


class WindowSerializer(serializers.ModelSerializer):
    created_by_name = serializers.CharField(source="created_by.username", read_only=True)

    class Meta:
        model = Window
        fields = "__all__"


class WindowCreateSerializer(serializers.Serializer):
    phase_kind = serializers.ChoiceField(choices=PHASE_CHOICES)
    track = serializers.ChoiceField(choices=TRACK_CHOICES)
    sub_assessment = serializers.ChoiceField(choices=SUB_ASSESSMENT_CHOICES, required=False, allow_null=True, allow_blank=True)
    starts_at = serializers.DateTimeField()
    ends_at = serializers.DateTimeField()


class WindowUpdateSerializer(serializers.Serializer):
    starts_at = serializers.DateTimeField(required=False)
    ends_at = serializers.DateTimeField(required=False)


class WindowQuerySerializer(serializers.Serializer):
    phase_kind = serializers.ChoiceField(choices=PHASE_CHOICES)
    track = serializers.ChoiceField(choices=TRACK_CHOICES)
    sub_assessment = serializers.ChoiceField(choices=SUB_ASSESSMENT_CHOICES, required=False, allow_null=True, allow_blank=True)


class EvaluationRecordSerializer(serializers.ModelSerializer):
    student_name = serializers.CharField(source="student.username", read_only=True)
    group_code = serializers.CharField(source="group.code", read_only=True, default=None)
    internal = serializers.SerializerMethodField()
    external = serializers.SerializerMethodField()
    state = serializers.SerializerMethodField()

    class Meta:
        model = EvaluationRecord
        fields = [
            "id",
            "student",
            "student_name",
            "group",
            "group_code",
            "project",
            "internal_evaluator",
            "external_evaluator",
            "internal",
            "external",
            "total_internal",
            "total_external",
            "total",
            "state",
            "is_published",
            "published_at",
            "published_by",
            "created_at",
            "updated_at",
        ]

    def _component(self, obj, component):
        raw = getattr(obj, f"{component}_raw")
        return {
            "raw_score": float(raw) if raw is not None else None,
            "converted_score": getattr(obj, f"{component}_converted"),
            "max_raw": SCALES[component].raw_max,
            "max_converted": SCALES[component].converted_max,
        }

    def get_internal(self, obj):
        return {component: self._component(obj, component) for component in INTERNAL_COMPONENTS}

    def get_external(self, obj):
        return self._component(obj, "external")

    def get_state(self, obj):
        return record_state(obj)


class InternalScoreSerializer(serializers.Serializer):
    student_id = serializers.IntegerField()
    group_id = serializers.IntegerField()
    component = serializers.ChoiceField(choices=list(INTERNAL_COMPONENTS))
    raw_score = serializers.DecimalField(max_digits=6, decimal_places=2)


class ExternalScoreSerializer(serializers.Serializer):
    student_id = serializers.IntegerField()
    group_id = serializers.IntegerField()
    raw_score = serializers.DecimalField(max_digits=6, decimal_places=2)


class PublishSerializer(serializers.Serializer):
    record_ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)
    is_published = serializers.BooleanField(default=True)


class ReleaseSerializer(serializers.Serializer):
    track = serializers.ChoiceField(choices=TRACK_CHOICES)
    sub_assessment = serializers.ChoiceField(choices=SUB_ASSESSMENT_CHOICES, required=False, allow_null=True, allow_blank=True)


class AssignSerializer(serializers.Serializer):
    group_id = serializers.IntegerField()
    evaluator_id = serializers.IntegerField()


class AssignSoloSerializer(serializers.Serializer):
    student_id = serializers.IntegerField()
    evaluator_id = serializers.IntegerField()


class TrackSerializer(serializers.Serializer):
    track = serializers.ChoiceField(choices=TRACK_CHOICES, required=False, allow_null=True, allow_blank=True)

