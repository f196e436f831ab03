"""Tests for the orchestration management commands."""

import json
import tempfile
from io import StringIO
from pathlib import Path

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings

from apps.incidents.models import Batch, Incident, IncidentStatus
from apps.orchestration.corrections import reject, submit_corrections


@override_settings(INTELLIGENCE_PROVIDER="local", PIPELINE_EXECUTION_BACKEND="direct", DELIVERY_SINKS=[])
class CommandTests(TestCase):
    def call(self, *args):
        out = StringIO()
        call_command(*args, stdout=out)
        return out.getvalue()

    def write_json(self, data):
        directory = tempfile.mkdtemp()
        path = Path(directory) / "input.json"
        path.write_text(json.dumps(data))
        return str(path)

    def test_submit_incident_json(self):
        output = self.call("submit_incident", "--submitter", "wallet-a", "--text", "Water leak in lab 3", "--json")

        data = json.loads(output)
        assert data["status"] == "COMPLETED"
        assert Incident.objects.get(pk=data["incident_id"]).status == IncidentStatus.COMPLETED

    def test_submit_incident_requires_input(self):
        with pytest.raises(CommandError, match="--text or --file"):
            self.call("submit_incident")

    def test_submit_incident_validation_error(self):
        with pytest.raises(CommandError, match="submitter is required"):
            self.call("submit_incident", "--text", "No owner")

    def test_process_batch_from_file(self):
        path = self.write_json([{"text": "Leak in lab 3"}, {"text": "Broken window in hall"}])

        output = self.call("process_batch", "--file", path, "--submitter", "wallet-a", "--json")

        data = json.loads(output)
        assert data["total"] == 2
        assert data["processed"] == 2
        assert Batch.objects.count() == 1

    def test_process_batch_stats(self):
        path = self.write_json([{"text": "Leak in lab 3"}])
        batch_id = json.loads(self.call("process_batch", "--file", path, "--submitter", "wallet-a", "--json"))[
            "batch_id"
        ]

        stats = json.loads(self.call("process_batch", "--stats", batch_id))

        assert stats["total_incidents"] == 1

    def test_reprocess_pending(self):
        data = json.loads(self.call("submit_incident", "--submitter", "wallet-a", "--text", "Leak", "--json"))
        reject(data["incident_id"], "too vague", actor="reviewer")
        submit_corrections(data["incident_id"], {"text": "Leak from the ceiling in lab 3"}, actor="reviewer")

        summary = json.loads(self.call("reprocess_pending", "--json"))

        assert summary["total"] == 1
        assert summary["successful"] == 1

    def test_reprocess_pending_nothing(self):
        assert "No incidents pending reprocess" in self.call("reprocess_pending")
