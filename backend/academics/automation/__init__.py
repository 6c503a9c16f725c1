from .tasks import (
    refresh_window_statuses_job,
    purge_expired_windows_job,
)

__all__ = [
    "refresh_window_statuses_job",
    "purge_expired_windows_job",
]
