from rest_framework.permissions import BasePermission, SAFE_METHODS


def _role(user):
    if not user or not user.is_authenticated:
        return None
    if user.is_superuser:
        return "admin"
    return getattr(user, "role", "student")


def is_coordinator(user):
    return _role(user) in ["admin", "coordinator"]


def is_evaluator(user):
    return _role(user) in ["admin", "coordinator", "faculty"]


def actor_role(user):
    return _role(user)


class WindowPermissions(BasePermission):
    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        if request.method in SAFE_METHODS:
            return True
        return is_coordinator(request.user)


class ScoreEntryPermissions(BasePermission):
    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return is_evaluator(request.user)


class CoordinatorPermissions(BasePermission):
    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return is_coordinator(request.user)
