from __future__ import annotations

import signal
import threading

from django.core.management.base import BaseCommand

from academics.scheduler import REFRESH_TASK, build_reconciler


class Command(BaseCommand):
    help = "Run the in-process window reconciliation loop in the foreground."

    def add_arguments(self, parser):
        parser.add_argument(
            "--once",
            action="store_true",
            help="Run a single status refresh and exit.",
        )

    def handle(self, *args, **options):
        reconciler = build_reconciler()

        if options["once"]:
            result = reconciler.run_now(REFRESH_TASK)
            self.stdout.write(self.style.SUCCESS(f"Window status refresh: {result}"))
            return

        stopped = threading.Event()

        def _stop(signum, frame):
            stopped.set()

        signal.signal(signal.SIGTERM, _stop)
        reconciler.start()
        status = reconciler.status()
        self.stdout.write(
            self.style.NOTICE(
                f"Reconciler running {status['task_count']} task(s): "
                + ", ".join(f"{t['name']} every {t['interval_seconds']}s" for t in status["tasks"]),
            ),
        )
        try:
            stopped.wait()
        except KeyboardInterrupt:
            self.stdout.write(self.style.WARNING("Reconciler stopped by user"))
        finally:
            reconciler.shutdown()
