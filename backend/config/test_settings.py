from .settings import *  # noqa: F401,F403

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

RECONCILER_AUTOSTART = False
WINDOW_CLEANUP_ENABLED = False
LEGACY_GRADE_RELEASE = True
ENFORCE_ASSESSMENT_WINDOWS = False
EVALUATOR_FAIRNESS_THRESHOLD = 1

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {"null": {"class": "logging.NullHandler"}},
    "root": {"handlers": ["null"], "level": "WARNING"},
}
