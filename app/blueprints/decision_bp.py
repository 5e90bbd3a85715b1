"""
Decision Process Engine
Decision process API: templates, instances, transitions, proposals.

Thin HTTP layer. Every route delegates to a service function; service
exceptions are mapped to JSON errors by ``register_error_handlers``.
"""

import logging

from flask import Blueprint, jsonify

from app import limiter
from app.blueprints import json_body, register_error_handlers
from app.services import decision_service, proposal_service, schema_registry
from app.services.schema_validator import schema_validator
from app.services.transition_monitor import process_decision_transitions
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

decision_bp = Blueprint("decision", __name__, url_prefix="/api/v1")
register_error_handlers(decision_bp)


# ═════════════════════════════════════════════════════════════════════════
# Templates & schemas
# ═════════════════════════════════════════════════════════════════════════

@decision_bp.route("/decision-templates", methods=["GET"])
def list_templates():
    templates = schema_registry.list_templates()
    return jsonify({"items": templates, "total": len(templates)})


@decision_bp.route("/decision-templates/<template_id>", methods=["GET"])
def get_template(template_id):
    return jsonify(schema_registry.get_template(template_id).to_dict())


@decision_bp.route("/decision-templates", methods=["POST"])
def save_template():
    """Create or replace a stored template (structural + schema pre-flight)."""
    row = schema_registry.save_template(json_body())
    return jsonify(row.to_dict()), 201


@decision_bp.route("/decision-schemas/check", methods=["POST"])
def check_schema():
    """Pre-flight a JSON schema document without any data."""
    data = json_body()
    if "schema" not in data:
        return api_error(E.VALIDATION_REQUIRED, "schema is required")
    return jsonify(schema_validator.check_schema(data["schema"]).to_dict())


# ═════════════════════════════════════════════════════════════════════════
# Instances
# ═════════════════════════════════════════════════════════════════════════

@decision_bp.route("/decision-instances", methods=["POST"])
def create_instance():
    data = json_body()
    if not data.get("template_id"):
        return api_error(E.VALIDATION_REQUIRED, "template_id is required")

    instance = decision_service.create_instance_from_template(
        data["template_id"],
        name=data.get("name"),
        description=data.get("description", ""),
        phases=data.get("phases"),
        config=data.get("config"),
        proposal_template=data.get("proposal_template"),
        status=data.get("status", "draft"),
        profile_id=data.get("profile_id"),
        owner_profile_id=data.get("owner_profile_id"),
    )
    return jsonify(instance.to_dict()), 201


@decision_bp.route("/decision-instances/<instance_id>", methods=["GET"])
def get_instance(instance_id):
    return jsonify(decision_service.get_instance(instance_id).to_dict())


@decision_bp.route("/decision-instances/<instance_id>", methods=["PATCH"])
def update_instance(instance_id):
    data = json_body()
    instance, counts = decision_service.update_decision_instance(
        instance_id,
        name=data.get("name"),
        description=data.get("description"),
        status=data.get("status"),
        config=data.get("config"),
        phases=data.get("phases"),
        proposal_template=data.get("proposal_template"),
    )
    body = instance.to_dict()
    body["transitions"] = counts
    return jsonify(body)


@decision_bp.route("/decision-instances/<instance_id>/advance", methods=["POST"])
def advance_instance(instance_id):
    return jsonify(decision_service.advance_phase(instance_id).to_dict())


@decision_bp.route("/decision-instances/<instance_id>/transitions", methods=["GET"])
def list_transitions(instance_id):
    transitions = decision_service.list_transitions(instance_id)
    return jsonify({"items": [t.to_dict() for t in transitions], "total": len(transitions)})


@decision_bp.route("/decision-transitions/process", methods=["POST"])
@limiter.limit("10/minute")
def process_transitions():
    """Run the transition monitor once (for external schedulers)."""
    return jsonify(process_decision_transitions())


# ═════════════════════════════════════════════════════════════════════════
# Proposals
# ═════════════════════════════════════════════════════════════════════════

@decision_bp.route("/decision-instances/<instance_id>/proposals", methods=["POST"])
def create_proposal(instance_id):
    data = json_body()
    proposal = proposal_service.create_proposal(
        instance_id,
        proposal_data=data.get("proposal_data"),
        collaboration_doc_id=data.get("collaboration_doc_id"),
        profile_id=data.get("profile_id"),
    )
    return jsonify(proposal.to_dict()), 201


@decision_bp.route("/proposals/<proposal_id>", methods=["PATCH"])
def update_proposal(proposal_id):
    data = json_body()
    proposal = proposal_service.update_proposal(
        proposal_id,
        proposal_data=data.get("proposal_data"),
        collaboration_doc_id=data.get("collaboration_doc_id"),
    )
    return jsonify(proposal.to_dict())


@decision_bp.route("/proposals/<proposal_id>/submit", methods=["POST"])
def submit_proposal(proposal_id):
    return jsonify(proposal_service.submit_proposal(proposal_id).to_dict())
