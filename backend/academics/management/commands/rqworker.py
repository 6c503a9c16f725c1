from __future__ import annotations

from django.core.management.base import BaseCommand

from rq import Queue, Worker

from academics.queues import QUEUE_NAME, redis_conn


class Command(BaseCommand):
    help = "Run an RQ worker that executes queued reconciliation jobs."

    def add_arguments(self, parser):
        parser.add_argument(
            "queues",
            nargs="*",
            default=[QUEUE_NAME],
            help=f"Queue names to listen to (defaults to '{QUEUE_NAME}').",
        )
        parser.add_argument(
            "--burst",
            action="store_true",
            help="Run in burst mode and exit when the queues are empty.",
        )

    def handle(self, *args, **options):
        queue_names = options["queues"] or [QUEUE_NAME]
        queues = [Queue(name, connection=redis_conn) for name in queue_names]
        burst = options["burst"]

        self.stdout.write(
            self.style.NOTICE(
                f"Starting RQ worker for queues: {', '.join(queue_names)}{' (burst)' if burst else ''}",
            ),
        )

        worker = Worker(queues, connection=redis_conn)
        worker.work(burst=burst)
