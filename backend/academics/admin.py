from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin

from .models import User, Project, Group, SoloEnrollment, Window, EvaluationRecord, LegacySubmission


@admin.register(User)
class UserAdmin(DjangoUserAdmin):
    list_display = ("username", "email", "role", "is_external_evaluator", "is_staff", "is_superuser")
    list_filter = ("role", "is_external_evaluator", "is_staff", "is_superuser")
    search_fields = ("username", "email")
    ordering = ("username",)

    fieldsets = DjangoUserAdmin.fieldsets + (
        ("Role & Evaluation", {"fields": ("role", "is_external_evaluator")}),
    )
    add_fieldsets = DjangoUserAdmin.add_fieldsets + (
        ("Role & Evaluation", {"fields": ("role", "is_external_evaluator", "email")}),
    )


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ("title", "track", "faculty", "created_at")
    list_filter = ("track",)
    search_fields = ("title", "faculty__username")


@admin.register(Group)
class GroupAdmin(admin.ModelAdmin):
    list_display = ("code", "track", "status", "project", "faculty", "external_evaluator")
    list_filter = ("track", "status")
    search_fields = ("code", "project__title")
    filter_horizontal = ("members",)
    readonly_fields = ("external_assigned_at", "external_assigned_by")


@admin.register(SoloEnrollment)
class SoloEnrollmentAdmin(admin.ModelAdmin):
    list_display = ("student", "track", "project", "faculty", "external_evaluator")
    list_filter = ("track",)
    search_fields = ("student__username", "project__title")
    readonly_fields = ("external_assigned_at", "external_assigned_by")


@admin.register(Window)
class WindowAdmin(admin.ModelAdmin):
    list_display = ("phase_kind", "track", "sub_assessment", "starts_at", "ends_at", "is_active")
    list_filter = ("phase_kind", "track", "is_active")
    readonly_fields = ("is_active", "status_refreshed_at", "created_at", "updated_at")


@admin.register(EvaluationRecord)
class EvaluationRecordAdmin(admin.ModelAdmin):
    list_display = ("student", "group", "project", "total_internal", "total_external", "total", "is_published")
    list_filter = ("is_published", "project__track")
    search_fields = ("student__username", "group__code")
    # derived fields are only written by the score services
    readonly_fields = (
        "cla1_converted",
        "cla2_converted",
        "cla3_converted",
        "external_converted",
        "total_internal",
        "total_external",
        "total",
        "published_at",
        "published_by",
    )


@admin.register(LegacySubmission)
class LegacySubmissionAdmin(admin.ModelAdmin):
    list_display = ("track", "sub_assessment", "group", "student", "grade", "is_graded", "is_grade_released")
    list_filter = ("track", "is_graded", "is_grade_released")

    def has_add_permission(self, request):
        return False
