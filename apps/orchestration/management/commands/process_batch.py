"""
Management command to process a batch of incidents.

Usage:
    # Process a JSON list of submissions in parallel
    python manage.py process_batch --file batch.json --submitter alice

    # Sequential baseline run
    python manage.py process_batch --file batch.json --submitter alice --sequential

    # Retry the failed incidents of an earlier batch
    python manage.py process_batch --retry <batch_id>

    # Show statistics for a batch
    python manage.py process_batch --stats <batch_id>
"""

import json

from django.core.management.base import BaseCommand, CommandError

from apps.incidents.exceptions import IncidentError
from apps.orchestration.batch import BatchOrchestrator, get_batch_statistics


class Command(BaseCommand):
    help = "Process a batch of incidents with bounded concurrency"

    def add_arguments(self, parser):
        parser.add_argument("--file", type=str, help="Path to JSON file containing a list of submissions")
        parser.add_argument("--submitter", type=str, help="Submitter charged for the batch")
        parser.add_argument("--sequential", action="store_true", help="Run items one at a time")
        parser.add_argument("--max-concurrency", type=int, help="Items in flight per chunk")
        parser.add_argument("--retry", type=str, help="Retry the failed incidents of this batch")
        parser.add_argument("--stats", type=str, help="Print statistics for this batch")
        parser.add_argument("--json", action="store_true", help="Output result as JSON")

    def handle(self, *args, **options):
        try:
            if options["stats"]:
                self._write(get_batch_statistics(options["stats"]))
                return
            result = self._run(options)
        except IncidentError as e:
            raise CommandError(str(e))

        if result is None:
            self.stdout.write(self.style.WARNING("No failed incidents to retry"))
            return

        data = result.to_dict()
        if options["json"]:
            self._write(data)
            return

        self.stdout.write(self.style.SUCCESS(f"Batch {data['batch_id']}"))
        self.stdout.write(f"  Processed: {data['processed']}/{data['total']}")
        self.stdout.write(f"  Failed: {data['failed']}")
        self.stdout.write(f"  Duration: {data['duration_ms']:.0f}ms ({data['speedup_percent']}% faster)")
        for item in data["results"]:
            line = f"  [{item['index']}] {item['incident_id']} {item['status']}"
            if item["route"]:
                line += f" → {item['route']}"
            if item["error"]:
                line += f" ({item['error']})"
            self.stdout.write(line)

    def _run(self, options):
        orchestrator = BatchOrchestrator()
        parallel = not options["sequential"]
        if options["retry"]:
            return orchestrator.retry_failed_incidents(
                options["retry"], parallel=parallel, max_concurrency=options.get("max_concurrency")
            )

        if not options["file"] or not options["submitter"]:
            raise CommandError("Must specify --file and --submitter (or --retry / --stats)")
        try:
            with open(options["file"]) as f:
                items = json.load(f)
        except FileNotFoundError:
            raise CommandError(f"File not found: {options['file']}")
        except json.JSONDecodeError as e:
            raise CommandError(f"Invalid JSON in file: {e}")

        return orchestrator.process_batch(
            items,
            submitter=options["submitter"],
            parallel=parallel,
            max_concurrency=options.get("max_concurrency"),
        )

    def _write(self, data: dict):
        self.stdout.write(json.dumps(data, indent=2, default=str))
