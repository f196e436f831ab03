"""
Management command to reprocess corrected incidents.

Usage:
    # Reprocess the oldest pending incidents (up to REPROCESS_PAGE_SIZE)
    python manage.py reprocess_pending

    # Reprocess at most 10
    python manage.py reprocess_pending --limit 10

    # Reprocess a single incident
    python manage.py reprocess_pending --incident <incident_id>
"""

import json

from django.core.management.base import BaseCommand, CommandError

from apps.incidents.exceptions import IncidentError
from apps.orchestration.corrections import batch_reprocess_pending_corrections, reprocess


class Command(BaseCommand):
    help = "Reprocess incidents waiting on corrections"

    def add_arguments(self, parser):
        parser.add_argument("--limit", type=int, help="Maximum incidents to reprocess")
        parser.add_argument("--incident", type=str, help="Reprocess only this incident")
        parser.add_argument("--actor", type=str, default="cli", help="Actor recorded on the transition")
        parser.add_argument("--json", action="store_true", help="Output result as JSON")

    def handle(self, *args, **options):
        if options["incident"]:
            try:
                outcome = reprocess(options["incident"], actor=options["actor"])
            except IncidentError as e:
                raise CommandError(str(e))
            if options["json"]:
                self.stdout.write(json.dumps(outcome.to_dict(), indent=2, default=str))
            else:
                style = self.style.SUCCESS if outcome.succeeded else self.style.ERROR
                self.stdout.write(style(f"Incident {outcome.incident_id}: {outcome.status}"))
            return

        summary = batch_reprocess_pending_corrections(limit=options.get("limit"), actor=options["actor"])
        if options["json"]:
            self.stdout.write(json.dumps(summary, indent=2, default=str))
            return

        if not summary["total"]:
            self.stdout.write(self.style.WARNING("No incidents pending reprocess"))
            return
        self.stdout.write(
            self.style.SUCCESS(
                f"Reprocessed {summary['total']}: {summary['successful']} succeeded, {summary['failed']} failed"
            )
        )
        for item in summary["results"]:
            line = f"  {item['incident_id']} {item['status']}"
            if item.get("error"):
                line += f" ({item['error']})"
            self.stdout.write(line)
