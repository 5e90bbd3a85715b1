"""
Proposal Submission Gate

Phase-rule checks for proposal actions and the draft → submitted flow.

Submission order:
    1. proposal must be a draft (double submission is a StateError)
    2. current phase must allow ``proposals.submit`` (only explicit False blocks)
    3. if the instance carries a proposal template, the content must validate:
       collaboration-backed proposals are rebuilt from document fragments,
       local proposals validate ``proposal_data`` directly
    4. status flips to ``submitted``

If the collaborative document store cannot be reached the submission fails
closed with ServiceUnavailableError: unverifiable content is never submitted.
"""

from __future__ import annotations

import logging

from app.core.exceptions import NotFoundError, ServiceUnavailableError, StateError
from app.integrations.collab_gateway import collab_gateway
from app.models import db
from app.models.decision import ProcessInstance, Proposal
from app.services.decision_schemas import DecisionSchemaDefinition, is_action_allowed, strip_ui_schema
from app.services.proposal_data import (
    assemble_proposal_data,
    get_proposal_fragment_names,
    resolve_collaboration_doc_id,
)
from app.services.schema_registry import find_template
from app.services.schema_validator import schema_validator
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def _find_phase(phases: list[dict], phase_id: str) -> dict | None:
    return next((p for p in phases or [] if p.get("phaseId") == phase_id), None)


def check_phase_permission(
    phases: list[dict],
    current_phase_id: str,
    section: str,
    action: str,
    template: DecisionSchemaDefinition | None = None,
) -> bool:
    """True unless the current phase (or its template phase) sets
    ``rules.<section>.<action>`` to False.

        check_phase_permission(instance.phases, instance.current_phase_id, "voting", "submit")
    """
    instance_phase = _find_phase(phases, current_phase_id)
    template_phase = template.phase(current_phase_id) if template else None
    return is_action_allowed(instance_phase, template_phase, section, action)


def check_proposals_allowed(instance: ProcessInstance, action: str = "submit") -> None:
    """Raise StateError when the current phase forbids ``proposals.<action>``."""
    template = find_template(instance.process_template_id)
    if not check_phase_permission(
        instance.phases, instance.current_phase_id, "proposals", action, template,
    ):
        raise StateError(
            f"Proposal {action} is not allowed in phase '{instance.current_phase_id}'",
            current=instance.current_phase_id,
        )


def _get_instance(instance_id: str) -> ProcessInstance:
    instance = db.session.get(ProcessInstance, instance_id)
    if instance is None:
        raise NotFoundError(resource="ProcessInstance", resource_id=instance_id)
    return instance


def get_proposal(proposal_id: str) -> Proposal:
    proposal = db.session.get(Proposal, proposal_id)
    if proposal is None:
        raise NotFoundError(resource="Proposal", resource_id=proposal_id)
    return proposal


def create_proposal(
    instance_id: str,
    *,
    proposal_data: dict | None = None,
    collaboration_doc_id: str | None = None,
    profile_id: str | None = None,
) -> Proposal:
    """Create a draft proposal in a published instance.

    Raises:
        StateError: instance not published, or the phase forbids submissions.
    """
    instance = _get_instance(instance_id)
    if instance.status != "published":
        raise StateError(
            f"Process instance {instance.id} is {instance.status}; proposals need a published process",
            current=instance.status,
        )
    check_proposals_allowed(instance, "submit")

    proposal = Proposal(
        process_instance_id=instance.id,
        proposal_data=dict(proposal_data or {}),
        collaboration_doc_id=collaboration_doc_id,
        profile_id=profile_id,
        status="draft",
    )
    db.session.add(proposal)
    db.session.commit()
    logger.info(
        "Created proposal %s in instance %s", proposal.id, instance.id,
        extra={"proposal_id": proposal.id, "process_instance_id": instance.id},
    )
    return proposal


def update_proposal(
    proposal_id: str,
    *,
    proposal_data: dict | None = None,
    collaboration_doc_id: str | None = None,
) -> Proposal:
    """Merge ``proposal_data`` into the proposal when the phase allows edits."""
    proposal = get_proposal(proposal_id)
    check_proposals_allowed(proposal.process_instance, "edit")

    if proposal_data is not None:
        proposal.proposal_data = {**(proposal.proposal_data or {}), **proposal_data}
    if collaboration_doc_id is not None:
        proposal.collaboration_doc_id = collaboration_doc_id
    db.session.commit()
    logger.info("Updated proposal %s", proposal.id, extra={"proposal_id": proposal.id})
    return proposal


def _collect_content(proposal: Proposal, proposal_template: dict) -> dict:
    """Data to validate: assembled fragments or the local proposal data."""
    doc_id = resolve_collaboration_doc_id(proposal)
    if not doc_id:
        return dict(proposal.proposal_data or {})

    names = get_proposal_fragment_names(proposal_template)
    result = collab_gateway.get_document_fragments(doc_id, names)
    if not result.ok:
        logger.error(
            "Cannot verify proposal %s content: %s", proposal.id, result.error,
            extra={"proposal_id": proposal.id},
        )
        raise ServiceUnavailableError("collaboration", result.error or "document fetch failed")
    return assemble_proposal_data(proposal_template, result.fragments)


def submit_proposal(proposal_id: str) -> Proposal:
    """Submit a draft proposal.

    Raises:
        NotFoundError:           unknown proposal.
        StateError:              not a draft, or the phase forbids submission.
        ValidationError:         content does not satisfy the proposal template.
        ServiceUnavailableError: collaboration content could not be fetched.
    """
    proposal = get_proposal(proposal_id)
    if proposal.status != "draft":
        raise StateError(
            f"Proposal {proposal.id} is {proposal.status}; only drafts can be submitted",
            current=proposal.status,
        )

    instance = proposal.process_instance
    check_proposals_allowed(instance, "submit")

    proposal_template = instance.proposal_template
    if proposal_template:
        data = _collect_content(proposal, proposal_template)
        schema_validator.validate_proposal_data(strip_ui_schema(proposal_template), data)

    proposal.status = "submitted"
    proposal.submitted_at = utcnow()
    db.session.commit()

    logger.info(
        "Submitted proposal %s in instance %s", proposal.id, instance.id,
        extra={"proposal_id": proposal.id, "process_instance_id": instance.id},
    )
    return proposal
