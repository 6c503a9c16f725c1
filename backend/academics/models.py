from django.conf import settings
from django.db import models
from django.contrib.auth.models import AbstractUser


TRACK_CHOICES = [
    ("IDP", "IDP"),
    ("UROP", "UROP"),
    ("CAPSTONE", "Capstone"),
]

PHASE_CHOICES = [
    ("proposal", "Proposal"),
    ("application", "Application"),
    ("submission", "Submission"),
    ("assessment", "Assessment"),
    ("grade_release", "Grade Release"),
]

SUB_ASSESSMENT_CHOICES = [
    ("CLA-1", "CLA-1"),
    ("CLA-2", "CLA-2"),
    ("CLA-3", "CLA-3"),
    ("External", "External"),
]

TRACKS = [value for value, _ in TRACK_CHOICES]
PHASES = [value for value, _ in PHASE_CHOICES]
SUB_ASSESSMENTS = [value for value, _ in SUB_ASSESSMENT_CHOICES]


class User(AbstractUser):
    ROLE_CHOICES = [
        ("student", "Student"),
        ("faculty", "Faculty"),
        ("coordinator", "Coordinator"),
        ("admin", "Admin"),
    ]
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default="student")
    is_external_evaluator = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "academics_user"


class Project(models.Model):
    title = models.CharField(max_length=255)
    track = models.CharField(max_length=20, choices=TRACK_CHOICES)
    faculty = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="supervised_projects",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["title"]

    def __str__(self):
        return f"{self.title} ({self.track})"


class Group(models.Model):
    STATUS_CHOICES = [
        ("forming", "Forming"),
        ("applied", "Applied"),
        ("approved", "Approved"),
        ("rejected", "Rejected"),
        ("frozen", "Frozen"),
    ]

    code = models.CharField(max_length=6, unique=True)
    track = models.CharField(max_length=20, choices=TRACK_CHOICES)
    members = models.ManyToManyField(settings.AUTH_USER_MODEL, related_name="project_groups", blank=True)
    project = models.ForeignKey(Project, on_delete=models.SET_NULL, null=True, blank=True, related_name="groups")
    faculty = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="internal_groups",
    )
    external_evaluator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="external_groups",
    )
    external_assigned_at = models.DateTimeField(null=True, blank=True)
    external_assigned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="forming")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["track", "status"], name="academics_group_track_idx"),
            models.Index(fields=["external_evaluator"], name="academics_group_ext_idx"),
        ]

    def __str__(self):
        return f"Group {self.code} ({self.track})"

    @property
    def internal_faculty_id(self):
        if self.faculty_id:
            return self.faculty_id
        if self.project_id and self.project:
            return self.project.faculty_id
        return None


class SoloEnrollment(models.Model):
    """A student taking a track on their own, without a group."""

    student = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="solo_enrollment")
    track = models.CharField(max_length=20, choices=TRACK_CHOICES)
    project = models.ForeignKey(Project, on_delete=models.SET_NULL, null=True, blank=True, related_name="solo_enrollments")
    faculty = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="solo_supervisions",
    )
    external_evaluator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="external_solos",
    )
    external_assigned_at = models.DateTimeField(null=True, blank=True)
    external_assigned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"Solo {self.student} ({self.track})"

    @property
    def internal_faculty_id(self):
        if self.faculty_id:
            return self.faculty_id
        if self.project_id and self.project:
            return self.project.faculty_id
        return None


class Window(models.Model):
    phase_kind = models.CharField(max_length=20, choices=PHASE_CHOICES)
    track = models.CharField(max_length=20, choices=TRACK_CHOICES)
    sub_assessment = models.CharField(max_length=20, choices=SUB_ASSESSMENT_CHOICES, null=True, blank=True)
    starts_at = models.DateTimeField()
    ends_at = models.DateTimeField()
    # Cache of "now is inside [starts_at, ends_at]"; refreshed by reconciliation.
    is_active = models.BooleanField(default=False)
    status_refreshed_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="created_windows")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["starts_at"]
        indexes = [
            models.Index(fields=["phase_kind", "track", "is_active"], name="academics_window_key_idx"),
            models.Index(fields=["starts_at", "ends_at"], name="academics_window_span_idx"),
        ]

    def __str__(self):
        label = f"{self.phase_kind}/{self.track}"
        if self.sub_assessment:
            label = f"{label}/{self.sub_assessment}"
        return f"Window {label} [{self.starts_at:%Y-%m-%d %H:%M} - {self.ends_at:%Y-%m-%d %H:%M}]"

    def covers(self, instant):
        return self.starts_at <= instant <= self.ends_at

    def flag_is_fresh(self):
        """True when reconciliation has recomputed ``is_active`` since the last write to this window."""
        return self.status_refreshed_at is not None and self.status_refreshed_at >= self.updated_at


class EvaluationRecord(models.Model):
    student = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="evaluations")
    group = models.ForeignKey(Group, on_delete=models.CASCADE, null=True, blank=True, related_name="evaluations")
    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="evaluations")
    internal_evaluator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="internal_evaluations",
    )
    external_evaluator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="external_evaluations",
    )

    # Conduct scores stay NULL until the component is scored.
    cla1_raw = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    cla1_converted = models.PositiveSmallIntegerField(default=0)
    cla2_raw = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    cla2_converted = models.PositiveSmallIntegerField(default=0)
    cla3_raw = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    cla3_converted = models.PositiveSmallIntegerField(default=0)
    external_raw = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    external_converted = models.PositiveSmallIntegerField(default=0)

    total_internal = models.PositiveSmallIntegerField(default=0)
    total_external = models.PositiveSmallIntegerField(default=0)
    total = models.PositiveSmallIntegerField(default=0)

    is_published = models.BooleanField(default=False)
    published_at = models.DateTimeField(null=True, blank=True)
    published_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(fields=["student", "group", "project"], name="uniq_evaluation_per_enrolment"),
        ]
        indexes = [
            models.Index(fields=["internal_evaluator"], name="academics_eval_internal_idx"),
            models.Index(fields=["external_evaluator"], name="academics_eval_external_idx"),
            models.Index(fields=["is_published"], name="academics_eval_published_idx"),
        ]

    def __str__(self):
        return f"Evaluation {self.student_id} / {self.group_id or 'solo'} ({self.total})"


class LegacySubmission(models.Model):
    """
    Submission-level grading kept for the older grading path.

    The engine only flips ``is_grade_released`` when a track's final grades
    are released.
    """

    group = models.ForeignKey(Group, on_delete=models.CASCADE, null=True, blank=True, related_name="legacy_submissions")
    student = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="legacy_submissions",
    )
    track = models.CharField(max_length=20, choices=TRACK_CHOICES)
    sub_assessment = models.CharField(max_length=20, choices=SUB_ASSESSMENT_CHOICES, null=True, blank=True)
    grade = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    is_graded = models.BooleanField(default=False)
    is_grade_released = models.BooleanField(default=False)
    submitted_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-submitted_at"]
        indexes = [
            models.Index(fields=["track", "is_graded", "is_grade_released"], name="academics_legacy_release_idx"),
        ]

    def __str__(self):
        return f"Legacy submission {self.pk} ({self.track})"
