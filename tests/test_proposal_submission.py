"""
Proposal submission gate tests.

Covers:
    - draft → submitted for local proposal data
    - double submission rejected
    - phase rules blocking create / submit / edit
    - template validation aborting the status change
    - collaboration-backed content assembled from fragments
    - collaboration store unreachable → fail closed
"""

from unittest.mock import patch

import pytest

from app.core.exceptions import ServiceUnavailableError, StateError, ValidationError
from app.integrations.collab_gateway import FragmentResult
from app.models import db
from app.services import proposal_service
from app.services.decision_service import advance_phase, update_decision_instance
from app.services.proposal_service import (
    check_phase_permission,
    create_proposal,
    submit_proposal,
    update_proposal,
)


VALID_DATA = {"title": "Bike lanes", "summary": "Paint lanes on Main Street"}


def _fragments(result):
    return patch.object(proposal_service.collab_gateway, "get_document_fragments", return_value=result)


class TestCheckPhasePermission:
    PHASES = [
        {"phaseId": "open", "rules": {"proposals": {"submit": True}}},
        {"phaseId": "closed", "rules": {"proposals": {"submit": False}}},
        {"phaseId": "bare", "rules": {}},
    ]

    def test_explicit_true(self):
        assert check_phase_permission(self.PHASES, "open", "proposals", "submit") is True

    def test_explicit_false_blocks(self):
        assert check_phase_permission(self.PHASES, "closed", "proposals", "submit") is False

    def test_absent_flag_allows(self):
        assert check_phase_permission(self.PHASES, "bare", "proposals", "submit") is True
        assert check_phase_permission(self.PHASES, "bare", "voting", "edit") is True

    def test_template_rule_used_as_fallback(self, simple_template):
        phases = [{"phaseId": "review", "rules": {}}]

        assert check_phase_permission(phases, "review", "proposals", "submit", simple_template) is False


class TestSubmitLocalProposal:
    def test_submit_valid_draft(self, published_instance):
        proposal = create_proposal(published_instance.id, proposal_data=VALID_DATA)

        submitted = submit_proposal(proposal.id)

        assert submitted.status == "submitted"
        assert submitted.submitted_at is not None

    def test_double_submission_rejected(self, published_instance):
        proposal = create_proposal(published_instance.id, proposal_data=VALID_DATA)
        submit_proposal(proposal.id)

        with pytest.raises(StateError) as exc_info:
            submit_proposal(proposal.id)

        assert exc_info.value.current == "submitted"

    def test_invalid_content_keeps_draft(self, published_instance):
        proposal = create_proposal(published_instance.id, proposal_data={"title": "Only a title"})

        with pytest.raises(ValidationError) as exc_info:
            submit_proposal(proposal.id)

        assert exc_info.value.details == {"summary": "Proposal summary is required"}
        db.session.refresh(proposal)
        assert proposal.status == "draft"
        assert proposal.submitted_at is None

    def test_no_template_skips_validation(self, published_instance):
        data = dict(published_instance.instance_data)
        data.pop("proposalTemplate")
        published_instance.instance_data = data
        db.session.commit()
        proposal = create_proposal(published_instance.id, proposal_data={})

        assert submit_proposal(proposal.id).status == "submitted"


class TestPhaseRules:
    def test_create_blocked_when_phase_closed(self, published_instance):
        advance_phase(published_instance.id)

        with pytest.raises(StateError, match="review"):
            create_proposal(published_instance.id, proposal_data=VALID_DATA)

    def test_submit_blocked_after_phase_moves(self, published_instance):
        proposal = create_proposal(published_instance.id, proposal_data=VALID_DATA)
        advance_phase(published_instance.id)

        with pytest.raises(StateError):
            submit_proposal(proposal.id)
        assert proposal.status == "draft"

    def test_create_needs_published_instance(self, published_instance):
        update_decision_instance(published_instance.id, status="draft")

        with pytest.raises(StateError):
            create_proposal(published_instance.id, proposal_data=VALID_DATA)

    def test_edit_blocked_by_instance_rule(self, published_instance):
        proposal = create_proposal(published_instance.id, proposal_data={"title": "Draft"})
        update_decision_instance(published_instance.id, phases=[
            {"phaseId": "submission", "rules": {"proposals": {"edit": False}}},
        ])

        with pytest.raises(StateError):
            update_proposal(proposal.id, proposal_data={"title": "Changed"})

    def test_edit_merges_data(self, published_instance):
        proposal = create_proposal(published_instance.id, proposal_data={"title": "Draft"})

        updated = update_proposal(proposal.id, proposal_data={"summary": "Now with summary"})

        assert updated.proposal_data == {"title": "Draft", "summary": "Now with summary"}


class TestSubmitCollaborationProposal:
    def test_fragments_assembled_and_validated(self, published_instance):
        proposal = create_proposal(published_instance.id, collaboration_doc_id="doc-42")
        result = FragmentResult(ok=True, fragments={
            "title": "Tree planting",
            "summary": "Plant 200 trees",
            "budget": '{"amount": 1200, "currency": "EUR"}',
        })

        with _fragments(result) as fetch:
            submitted = submit_proposal(proposal.id)

        assert submitted.status == "submitted"
        doc_id, names = fetch.call_args.args
        assert doc_id == "doc-42"
        assert names == ["title", "budget", "summary"]

    def test_doc_id_inside_proposal_data(self, published_instance):
        proposal = create_proposal(published_instance.id, proposal_data={"collaborationDocId": "doc-7"})

        with _fragments(FragmentResult(ok=True, fragments=VALID_DATA)) as fetch:
            submit_proposal(proposal.id)

        assert fetch.call_args.args[0] == "doc-7"

    def test_missing_fragments_fail_validation(self, published_instance):
        proposal = create_proposal(published_instance.id, collaboration_doc_id="doc-42")

        with _fragments(FragmentResult(ok=True, fragments={"title": "Only title"})):
            with pytest.raises(ValidationError) as exc_info:
                submit_proposal(proposal.id)

        assert "summary" in exc_info.value.details
        assert proposal.status == "draft"

    def test_store_unreachable_fails_closed(self, published_instance):
        proposal = create_proposal(published_instance.id, collaboration_doc_id="doc-42")

        with _fragments(FragmentResult(ok=False, error="HTTP 503: down", status_code=503)):
            with pytest.raises(ServiceUnavailableError) as exc_info:
                submit_proposal(proposal.id)

        assert exc_info.value.service == "collaboration"
        db.session.refresh(proposal)
        assert proposal.status == "draft"
