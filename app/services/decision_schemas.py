"""
Decision Schema Model

Static definition of a decision process template: ordered phases, each with
behavioural rules, an optional settings schema and an optional selection
pipeline. Loosely-typed JSON documents are checked once here, at the
boundary, and are treated as opaque pre-validated structures afterwards.

Phase type is derived purely from list position: the first phase is
``initial``, the last is ``final``, everything else ``intermediate``.

Effective rule lookup (two levels, first non-None wins):
    1. the instance phase's own ``rules`` (owner overrides)
    2. the template phase's ``rules``
    3. the caller-supplied default

Usage:
    from app.services.decision_schemas import DecisionSchemaDefinition, resolve_rule

    schema = DecisionSchemaDefinition.from_dict(raw)
    method = effective_advancement_method(instance_phase, schema.phase("voting"))
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.core.exceptions import ConfigurationError
from app.models.decision import ADVANCEMENT_METHODS


# Unset advancement method means the phase only ends by explicit action.
DEFAULT_ADVANCEMENT_METHOD = "manual"

# Presentation-only keys embedded in settings / proposal schemas.
UI_SCHEMA_KEYS = ("ui", "uiSchema")


class PhaseType(str, Enum):
    INITIAL = "initial"
    INTERMEDIATE = "intermediate"
    FINAL = "final"


def phase_type(index: int, count: int) -> PhaseType:
    if index == 0:
        return PhaseType.INITIAL
    if index == count - 1:
        return PhaseType.FINAL
    return PhaseType.INTERMEDIATE


@dataclass(frozen=True)
class PhaseDefinition:
    """One template phase. ``rules`` and ``settings`` stay raw dicts."""
    id: str
    name: str
    description: str = ""
    rules: dict = field(default_factory=dict)
    settings: dict | None = None
    selection_pipeline: dict | None = None

    @classmethod
    def from_dict(cls, data: dict, position: int) -> PhaseDefinition:
        if not isinstance(data, dict):
            raise ConfigurationError(f"Phase #{position} must be an object")
        phase_id = data.get("id")
        if not phase_id or not isinstance(phase_id, str):
            raise ConfigurationError(f"Phase #{position} is missing a string 'id'")

        rules = data.get("rules") or {}
        if not isinstance(rules, dict):
            raise ConfigurationError(f"Phase '{phase_id}' rules must be an object", phase_id=phase_id)
        advancement = rules.get("advancement")
        if advancement is not None:
            if not isinstance(advancement, dict):
                raise ConfigurationError(
                    f"Phase '{phase_id}' advancement must be an object", phase_id=phase_id,
                )
            method = advancement.get("method")
            if method is not None and method not in ADVANCEMENT_METHODS:
                raise ConfigurationError(
                    f"Phase '{phase_id}' has unknown advancement method '{method}'",
                    phase_id=phase_id,
                )

        settings = data.get("settings")
        if settings is not None and not isinstance(settings, dict):
            raise ConfigurationError(f"Phase '{phase_id}' settings must be a schema object", phase_id=phase_id)

        return cls(
            id=phase_id,
            name=data.get("name") or phase_id,
            description=data.get("description") or "",
            rules=copy.deepcopy(rules),
            settings=copy.deepcopy(settings),
            selection_pipeline=copy.deepcopy(data.get("selectionPipeline")),
        )

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "rules": copy.deepcopy(self.rules),
        }
        if self.settings is not None:
            out["settings"] = copy.deepcopy(self.settings)
        if self.selection_pipeline is not None:
            out["selectionPipeline"] = copy.deepcopy(self.selection_pipeline)
        return out


@dataclass(frozen=True)
class DecisionSchemaDefinition:
    """A reusable decision process template."""
    id: str
    name: str
    phases: tuple[PhaseDefinition, ...]
    version: str = "1.0.0"
    description: str = ""
    proposal_template: dict | None = None
    rubric_template: dict | None = None
    config: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> DecisionSchemaDefinition:
        """Parse and structurally check a raw definition.

        Raises:
            ConfigurationError: zero phases, duplicate phase ids, malformed rules.
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Decision schema definition must be an object")
        schema_id = data.get("id")
        if not schema_id:
            raise ConfigurationError("Decision schema definition is missing 'id'")

        raw_phases = data.get("phases") or []
        if not isinstance(raw_phases, list) or not raw_phases:
            raise ConfigurationError(f"Template '{schema_id}' must define at least one phase")

        phases = tuple(PhaseDefinition.from_dict(p, i) for i, p in enumerate(raw_phases))
        seen: set[str] = set()
        for phase in phases:
            if phase.id in seen:
                raise ConfigurationError(
                    f"Template '{schema_id}' has duplicate phase id '{phase.id}'", phase_id=phase.id,
                )
            seen.add(phase.id)

        return cls(
            id=schema_id,
            name=data.get("name") or schema_id,
            phases=phases,
            version=data.get("version") or "1.0.0",
            description=data.get("description") or "",
            proposal_template=copy.deepcopy(data.get("proposalTemplate")),
            rubric_template=copy.deepcopy(data.get("rubricTemplate")),
            config=copy.deepcopy(data.get("config") or {}),
        )

    def phase(self, phase_id: str) -> PhaseDefinition | None:
        return next((p for p in self.phases if p.id == phase_id), None)

    @property
    def first_phase_id(self) -> str:
        return self.phases[0].id

    @property
    def last_phase_id(self) -> str:
        return self.phases[-1].id

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "version": self.version,
            "name": self.name,
            "description": self.description,
            "phases": [p.to_dict() for p in self.phases],
            "config": copy.deepcopy(self.config),
        }
        if self.proposal_template is not None:
            out["proposalTemplate"] = copy.deepcopy(self.proposal_template)
        if self.rubric_template is not None:
            out["rubricTemplate"] = copy.deepcopy(self.rubric_template)
        return out


# ═════════════════════════════════════════════════════════════════════════════
# Effective rule lookup
# ═════════════════════════════════════════════════════════════════════════════

def _dig(rules: Any, path: tuple[str, ...]) -> Any:
    node = rules
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _template_rules(template_phase: PhaseDefinition | dict | None) -> dict | None:
    if template_phase is None:
        return None
    if isinstance(template_phase, PhaseDefinition):
        return template_phase.rules
    return template_phase.get("rules")


def resolve_rule(
    instance_phase: dict | None,
    template_phase: PhaseDefinition | dict | None,
    *path: str,
    default: Any = None,
) -> Any:
    """Look up ``rules.<path>`` on the instance phase, then the template phase.

    ``None`` at a level means "not set here" and falls through to the next
    level; ``False`` is a real value and is returned as-is.
    """
    value = _dig((instance_phase or {}).get("rules"), path)
    if value is not None:
        return value
    value = _dig(_template_rules(template_phase), path)
    if value is not None:
        return value
    return default


def effective_advancement_method(
    instance_phase: dict | None,
    template_phase: PhaseDefinition | dict | None = None,
) -> str:
    return resolve_rule(
        instance_phase, template_phase, "advancement", "method",
        default=DEFAULT_ADVANCEMENT_METHOD,
    )


def effective_end_date(
    instance_phase: dict | None,
    template_phase: PhaseDefinition | dict | None = None,
) -> Any:
    """Instance ``endDate`` first, then ``rules.advancement.endDate``."""
    end_date = (instance_phase or {}).get("endDate")
    if end_date:
        return end_date
    return resolve_rule(instance_phase, template_phase, "advancement", "endDate")


def is_action_allowed(
    instance_phase: dict | None,
    template_phase: PhaseDefinition | dict | None,
    section: str,
    action: str,
) -> bool:
    """Only an explicit ``False`` blocks; an unset flag means allowed."""
    return resolve_rule(instance_phase, template_phase, section, action) is not False


def strip_ui_schema(schema: dict | None) -> dict | None:
    """Return a copy of ``schema`` without presentation-only sub-schemas."""
    if schema is None:
        return None
    return {k: copy.deepcopy(v) for k, v in schema.items() if k not in UI_SCHEMA_KEYS}
