"""Tests for the incident service layer."""

from unittest.mock import MagicMock

import pytest
from django.test import TestCase

from apps.incidents.exceptions import (
    IncidentNotFoundError,
    InsufficientCreditsError,
    SubmissionValidationError,
)
from apps.incidents.models import Incident, IncidentStatus, TransitionEvent
from apps.orchestration._tests.stubs import StubClassifier, make_ledger, make_orchestrator, payload
from apps.orchestration.backends import DirectPipelineBackend
from apps.orchestration.dtos import Submission
from apps.orchestration.services import (
    check_credits,
    create_incident,
    get_incident,
    list_incidents,
    submit_incident,
)


class SubmissionTests(TestCase):
    """Test Submission.from_payload()."""

    def test_valid_payload(self):
        submission = Submission.from_payload(
            {"text": "  Leak  ", "submitter": "wallet-a", "incident_type": "auto", "image_refs": ["s3://a.png"]}
        )
        assert submission.text == "Leak"
        assert submission.declared_type is None
        assert submission.image_refs == ["s3://a.png"]

    def test_wallet_address_accepted_as_submitter(self):
        assert Submission.from_payload({"text": "x", "wallet_address": "0xabc"}).submitter == "0xabc"

    def test_errors_collected(self):
        with pytest.raises(SubmissionValidationError) as excinfo:
            Submission.from_payload({"text": "", "incident_type": "weather", "audio_refs": "a.mp3"})

        assert excinfo.value.errors == [
            "text is required",
            "submitter is required",
            "incident_type must be one of harassment, accident, cyber, infrastructure, medical, other or auto",
            "audio_refs must be a list of strings",
        ]


class SubmitIncidentTests(TestCase):
    def setUp(self):
        self.ledger = make_ledger(2)
        self.orchestrator = make_orchestrator(StubClassifier(), ledger=self.ledger)
        self.backend = DirectPipelineBackend(self.orchestrator)

    def test_submit_runs_pipeline(self):
        outcome = submit_incident(payload(), backend=self.backend, ledger=self.ledger)

        assert outcome.succeeded
        incident = get_incident(outcome.incident_id)
        assert incident.status == IncidentStatus.COMPLETED
        assert incident.transitions.first().event == TransitionEvent.SUBMITTED

    def test_insufficient_credits_creates_nothing(self):
        ledger = make_ledger(0)

        with pytest.raises(InsufficientCreditsError):
            submit_incident(payload(), backend=self.backend, ledger=ledger)

        assert not Incident.objects.exists()

    def test_invalid_payload_creates_nothing(self):
        backend = MagicMock()

        with pytest.raises(SubmissionValidationError):
            submit_incident({"text": ""}, submitter="wallet-a", backend=backend, ledger=self.ledger)

        backend.dispatch.assert_not_called()
        assert not Incident.objects.exists()

    def test_check_credits_returns_balance(self):
        assert check_credits("wallet-a", 2, self.ledger) == 2
        with pytest.raises(InsufficientCreditsError):
            check_credits("wallet-a", 3, self.ledger)


class QueryTests(TestCase):
    def setUp(self):
        classifier = StubClassifier(
            fields_by_marker={
                "fire": {"incident_type": "accident", "severity_score": 85},
                "hack": {"incident_type": "cyber", "severity_score": 60},
            }
        )
        orchestrator = make_orchestrator(classifier)
        for text in ("Kitchen fire", "Server hack", "Pothole"):
            orchestrator.run(create_incident(Submission.from_payload(payload(text))))
        create_incident(Submission.from_payload(payload("Still running")))

    def test_get_incident_unknown(self):
        with pytest.raises(IncidentNotFoundError):
            get_incident("00000000-0000-0000-0000-000000000000")
        with pytest.raises(IncidentNotFoundError):
            get_incident("nope")

    def test_filters(self):
        assert list_incidents(severity="Critical")["total"] == 1
        assert list_incidents(incident_type="cyber")["items"][0].text == "Server hack"
        assert list_incidents(status="processing")["total"] == 1
        assert list_incidents(submitter="wallet-a")["total"] == 4

    def test_sort_by_severity(self):
        texts = [i.text for i in list_incidents(status="completed", sort="severity")["items"]]
        assert texts == ["Kitchen fire", "Server hack", "Pothole"]

    def test_pagination(self):
        page = list_incidents(page=2, limit=3)
        assert page["total"] == 4
        assert page["total_pages"] == 2
        assert len(page["items"]) == 1

    def test_unknown_status_or_sort(self):
        with pytest.raises(SubmissionValidationError):
            list_incidents(status="archived")
        with pytest.raises(SubmissionValidationError):
            list_incidents(sort="colour")
