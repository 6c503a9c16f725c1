from django.urls import path

from .views import (
    WindowViewSet,
    api_health,
    assign_evaluator,
    assign_solo_evaluator,
    auto_assign,
    evaluators,
    external_score,
    faculty_evaluations,
    grade_report,
    internal_score,
    metrics_view,
    my_evaluations,
    publish,
    rebalance,
    release,
    scheduler_status,
    validate_assignments,
)

window_list = WindowViewSet.as_view({"get": "list", "post": "create", "delete": "bulk_destroy"})
window_detail = WindowViewSet.as_view(
    {"get": "retrieve", "put": "update", "patch": "partial_update", "delete": "destroy"}
)

urlpatterns = [
    # windows; fixed paths go before the <pk> route
    path("windows", window_list, name="window-list"),
    path("windows/active", WindowViewSet.as_view({"get": "active"}), name="window-active"),
    path("windows/upcoming", WindowViewSet.as_view({"get": "upcoming"}), name="window-upcoming"),
    path(
        "windows/update-statuses",
        WindowViewSet.as_view({"post": "update_statuses"}),
        name="window-update-statuses",
    ),
    path("windows/<int:pk>", window_detail, name="window-detail"),

    # evaluations
    path("evaluations", faculty_evaluations, name="evaluation-list"),
    path("evaluations/mine", my_evaluations, name="evaluation-mine"),
    path("evaluations/internal-score", internal_score, name="evaluation-internal-score"),
    path("evaluations/external-score", external_score, name="evaluation-external-score"),
    path("evaluations/publish", publish, name="evaluation-publish"),
    path("evaluations/release", release, name="evaluation-release"),

    # external evaluators
    path("evaluators", evaluators, name="evaluator-list"),
    path("evaluators/assign", assign_evaluator, name="evaluator-assign"),
    path("evaluators/assign-solo", assign_solo_evaluator, name="evaluator-assign-solo"),
    path("evaluators/auto-assign", auto_assign, name="evaluator-auto-assign"),
    path("evaluators/rebalance", rebalance, name="evaluator-rebalance"),
    path("evaluators/validate", validate_assignments, name="evaluator-validate"),

    path("scheduler/status", scheduler_status, name="scheduler-status"),
    path("reports/grades", grade_report, name="report-grades"),
    path("health/", api_health, name="health"),
    path("metrics", metrics_view, name="metrics"),
]
