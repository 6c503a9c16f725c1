from django.conf import settings
from redis import Redis
from rq_scheduler import Scheduler

REDIS_URL = getattr(settings, "REDIS_URL", "redis://redis:6379/0")
QUEUE_NAME = getattr(settings, "RQ_QUEUE_NAME", "academics")

# Redis.from_url is lazy; nothing connects until a job is enqueued or scheduled.
redis_conn = Redis.from_url(REDIS_URL)

default_scheduler = Scheduler(queue_name=QUEUE_NAME, connection=redis_conn)

__all__ = ["redis_conn", "default_scheduler", "QUEUE_NAME"]
