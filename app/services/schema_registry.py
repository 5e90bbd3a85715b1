"""
Decision Template Repository

Resolves ``DecisionSchemaDefinition`` objects by id. Built-in templates ship
with the code; admin-saved templates live in ``decision_process_templates``
and take precedence over a built-in with the same id.

Usage:
    from app.services.schema_registry import get_template, save_template

    template = get_template("simple")
    row = save_template(raw_definition)
"""

from __future__ import annotations

import copy
import logging

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.decision import ProcessTemplate
from app.services.decision_schemas import DecisionSchemaDefinition, strip_ui_schema
from app.services.schema_validator import schema_validator

logger = logging.getLogger(__name__)


_BUDGET_SETTING = {
    "type": "number",
    "title": "Budget",
    "description": "Total budget available for this decision process",
    "minimum": 0,
}

_BUDGET_UI = {"ui:widget": "number", "ui:placeholder": "100000"}


# Simple voting with linear phases: submission → review → voting → results
SIMPLE_VOTING = {
    "id": "simple",
    "version": "1.0.0",
    "name": "Simple Voting",
    "description": "Basic approval voting where members vote for multiple proposals.",
    "phases": [
        {
            "id": "submission",
            "name": "Proposal Submission",
            "description": "Members submit proposals for consideration.",
            "rules": {
                "proposals": {"submit": True},
                "voting": {"submit": False},
                "advancement": {"method": "date"},
            },
            "settings": {
                "type": "object",
                "properties": {
                    "budget": _BUDGET_SETTING,
                    "maxProposalsPerMember": {
                        "type": "number",
                        "title": "Maximum Proposals Per Member",
                        "description": "How many proposals can each member submit?",
                        "minimum": 1,
                        "default": 3,
                    },
                },
                "ui": {
                    "budget": _BUDGET_UI,
                    "maxProposalsPerMember": {"ui:widget": "number", "ui:placeholder": "3"},
                },
            },
        },
        {
            "id": "review",
            "name": "Review & Shortlist",
            "description": "Reviewers evaluate and shortlist proposals.",
            "rules": {
                "proposals": {"submit": False},
                "voting": {"submit": False},
                "advancement": {"method": "date"},
            },
            "settings": {
                "type": "object",
                "properties": {"budget": _BUDGET_SETTING},
                "ui": {"budget": _BUDGET_UI},
            },
        },
        {
            "id": "voting",
            "name": "Voting",
            "description": "Members vote on shortlisted proposals.",
            "rules": {
                "proposals": {"submit": False},
                "voting": {"submit": True},
                "advancement": {"method": "date"},
            },
            "settings": {
                "type": "object",
                "required": ["maxVotesPerMember"],
                "properties": {
                    "budget": _BUDGET_SETTING,
                    "maxVotesPerMember": {
                        "type": "number",
                        "title": "Maximum Votes Per Member",
                        "description": "How many proposals can each member vote for?",
                        "minimum": 1,
                        "default": 3,
                    },
                },
                "ui": {
                    "budget": _BUDGET_UI,
                    "maxVotesPerMember": {"ui:widget": "number", "ui:placeholder": "5"},
                },
            },
            "selectionPipeline": {
                "version": "1.0.0",
                "blocks": [
                    {
                        "id": "sort-by-likes",
                        "type": "sort",
                        "name": "Sort by likes count",
                        "sortBy": [{"field": "voteData.likesCount", "order": "desc"}],
                    },
                    {
                        "id": "limit-by-votes",
                        "type": "limit",
                        "name": "Take top N (based on maxVotesPerMember config)",
                        "count": {"variable": "maxVotesPerMember"},
                    },
                ],
            },
        },
        {
            "id": "results",
            "name": "Results",
            "description": "View final results and winning proposals.",
            "rules": {
                "proposals": {"submit": False},
                "voting": {"submit": False},
                "advancement": {"method": "date"},
            },
            "settings": {
                "type": "object",
                "properties": {"budget": _BUDGET_SETTING},
                "ui": {"budget": _BUDGET_UI},
            },
        },
    ],
    "proposalTemplate": {
        "type": "object",
        "properties": {
            "title": {"type": "string", "title": "Proposal title", "x-format": "short-text"},
            "budget": {
                "type": "object",
                "title": "Budget",
                "x-format": "money",
                "properties": {
                    "amount": {"type": "number"},
                    "currency": {"type": "string", "default": "USD"},
                },
            },
            "summary": {"type": "string", "title": "Proposal summary", "x-format": "long-text"},
        },
        "x-field-order": ["title", "budget", "summary"],
        "required": ["summary", "title"],
    },
}

BUILTIN_TEMPLATES: dict[str, dict] = {
    SIMPLE_VOTING["id"]: SIMPLE_VOTING,
}


def get_template(template_id: str) -> DecisionSchemaDefinition:
    """Return the template with ``template_id``; stored rows win over built-ins.

    Raises:
        NotFoundError: no stored or built-in template has this id.
    """
    row = db.session.get(ProcessTemplate, template_id)
    if row is not None:
        return DecisionSchemaDefinition.from_dict(row.definition)
    raw = BUILTIN_TEMPLATES.get(template_id)
    if raw is None:
        raise NotFoundError(resource="DecisionTemplate", resource_id=template_id)
    return DecisionSchemaDefinition.from_dict(copy.deepcopy(raw))


def find_template(template_id: str) -> DecisionSchemaDefinition | None:
    """Like ``get_template`` but returns None when the id is unknown."""
    try:
        return get_template(template_id)
    except NotFoundError:
        logger.warning("Decision template %s not found", template_id)
        return None


def list_templates() -> list[dict]:
    summaries: dict[str, dict] = {}
    for template_id, raw in BUILTIN_TEMPLATES.items():
        summaries[template_id] = {
            "id": template_id,
            "version": raw.get("version"),
            "name": raw.get("name"),
            "description": raw.get("description", ""),
            "phase_count": len(raw.get("phases") or []),
            "source": "builtin",
        }
    for row in ProcessTemplate.query.order_by(ProcessTemplate.id).all():
        summaries[row.id] = {
            "id": row.id,
            "version": row.version,
            "name": row.name,
            "description": row.description or "",
            "phase_count": len((row.definition or {}).get("phases") or []),
            "source": "stored",
        }
    return [summaries[k] for k in sorted(summaries)]


def check_template_schemas(definition: DecisionSchemaDefinition) -> None:
    """Pre-flight every embedded schema of a template.

    Raises:
        ValidationError: a settings, proposal or rubric schema is malformed.
    """
    for phase in definition.phases:
        if phase.settings is not None:
            schema_validator.assert_valid_schema(
                strip_ui_schema(phase.settings), label=f"{phase.id}.settings",
            )
    if definition.proposal_template is not None:
        schema_validator.assert_valid_schema(
            strip_ui_schema(definition.proposal_template), label="proposalTemplate",
        )
    if definition.rubric_template is not None:
        schema_validator.assert_valid_schema(
            strip_ui_schema(definition.rubric_template), label="rubricTemplate",
        )


def save_template(data: dict) -> ProcessTemplate:
    """Create or replace a stored template after structural and schema checks.

    Raises:
        ConfigurationError: zero phases, duplicate phase ids, malformed rules.
        ValidationError: an embedded schema fails the pre-flight check.
    """
    definition = DecisionSchemaDefinition.from_dict(data)
    check_template_schemas(definition)

    row = db.session.get(ProcessTemplate, definition.id)
    if row is None:
        row = ProcessTemplate(id=definition.id)
        db.session.add(row)
    row.version = definition.version
    row.name = definition.name
    row.description = definition.description
    row.definition = definition.to_dict()
    db.session.commit()

    logger.info(
        "Saved decision template %s v%s (%d phases)",
        definition.id, definition.version, len(definition.phases),
    )
    return row
