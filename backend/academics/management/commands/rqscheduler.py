from __future__ import annotations

from django.core.management.base import BaseCommand

from rq_scheduler import Scheduler

from academics.queues import QUEUE_NAME, redis_conn
from academics.scheduler import register_reconciliation_jobs


class Command(BaseCommand):
    help = "Register the window reconciliation jobs and run the RQ scheduler loop that enqueues them."

    def add_arguments(self, parser):
        parser.add_argument(
            "--queue",
            default=QUEUE_NAME,
            help=f"Queue name that scheduled jobs should be enqueued into (default: {QUEUE_NAME}).",
        )
        parser.add_argument(
            "--interval",
            type=int,
            default=60,
            help="Polling interval in seconds (default: 60).",
        )
        parser.add_argument(
            "--skip-register",
            action="store_true",
            help="Do not (re)register the reconciliation jobs before starting.",
        )

    def handle(self, *args, **options):
        queue_name = options["queue"]
        interval = options["interval"]

        if not options["skip_register"]:
            for identifier in register_reconciliation_jobs():
                self.stdout.write(self.style.SUCCESS(f"Registered {identifier}"))

        scheduler = Scheduler(queue_name=queue_name, connection=redis_conn, interval=interval)
        self.stdout.write(
            self.style.NOTICE(
                f"Starting RQ scheduler for queue '{queue_name}' (interval={interval}s)",
            ),
        )
        try:
            scheduler.run()
        except KeyboardInterrupt:
            self.stdout.write(self.style.WARNING("Scheduler stopped by user"))
