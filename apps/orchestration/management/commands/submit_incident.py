"""
Management command to submit one incident and run it through the pipeline.

Usage:
    # Submit text directly
    python manage.py submit_incident --submitter alice --text "Broken streetlight on Main St"

    # Submit a JSON payload from a file
    python manage.py submit_incident --file incident.json

    # Declare the category instead of auto-detecting it
    python manage.py submit_incident --submitter alice --text "..." --type infrastructure

    # Output the full run outcome as JSON
    python manage.py submit_incident --file incident.json --json
"""

import json

from django.core.management.base import BaseCommand, CommandError

from apps.incidents.exceptions import IncidentError
from apps.orchestration.backends import get_backend
from apps.orchestration.services import submit_incident


class Command(BaseCommand):
    help = "Submit an incident: intake → understand → decide → review → audit"

    def add_arguments(self, parser):
        parser.add_argument("--text", type=str, help="Incident report text")
        parser.add_argument("--file", type=str, help="Path to JSON file containing the submission")
        parser.add_argument("--submitter", type=str, help="Submitter identity (overrides the payload)")
        parser.add_argument(
            "--type",
            type=str,
            default="auto",
            help="Declared incident type (default: auto)",
        )
        parser.add_argument(
            "--backend",
            type=str,
            help="Execution backend: direct or workflow (default: PIPELINE_EXECUTION_BACKEND)",
        )
        parser.add_argument("--json", action="store_true", help="Output result as JSON")

    def handle(self, *args, **options):
        payload = self._get_payload(options)

        try:
            backend = get_backend(options.get("backend"))
        except KeyError as e:
            raise CommandError(str(e))

        try:
            outcome = submit_incident(payload, submitter=options.get("submitter"), backend=backend)
        except IncidentError as e:
            raise CommandError(str(e))

        if options["json"]:
            self.stdout.write(json.dumps(outcome.to_dict(), indent=2, default=str))
            return

        if outcome.succeeded:
            self.stdout.write(self.style.SUCCESS(f"Status: {outcome.status}"))
        elif outcome.status == "DISPATCHED":
            self.stdout.write(self.style.WARNING(f"Status: {outcome.status}"))
        else:
            self.stdout.write(self.style.ERROR(f"Status: {outcome.status}"))
        self.stdout.write(f"Incident: {outcome.incident_id}")
        self.stdout.write(f"Trace ID: {outcome.trace_id}")
        if outcome.decide and outcome.decide.decision:
            decision = outcome.decide.decision
            self.stdout.write(f"Route: {decision.route} ({', '.join(decision.rules_triggered)})")
        if outcome.workflow_job_id:
            self.stdout.write(f"Workflow job: {outcome.workflow_job_id}")
        if outcome.final_error:
            self.stdout.write(self.style.ERROR(f"Error: {outcome.final_error.message}"))

    def _get_payload(self, options) -> dict:
        if options["file"]:
            try:
                with open(options["file"]) as f:
                    payload = json.load(f)
            except FileNotFoundError:
                raise CommandError(f"File not found: {options['file']}")
            except json.JSONDecodeError as e:
                raise CommandError(f"Invalid JSON in file: {e}")
            if not isinstance(payload, dict):
                raise CommandError("Submission file must contain a JSON object")
            return payload
        if options["text"]:
            return {"text": options["text"], "incident_type": options["type"]}
        raise CommandError("Must specify --text or --file")
