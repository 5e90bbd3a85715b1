"""
Instance Materializer

Derives the mutable per-instance phase list from a template plus owner
overrides (``startDate``, ``endDate``, ``settings``, partial ``rules``).

Settings handling:
    - resolved value = schema defaults, then stored values, then the override
    - validated against the phase settings schema with its ``ui`` block removed
    - any invalid phase fails the whole call; nothing is applied partially

Usage:
    instance_data = materialize_instance(template, overrides)
    phases = apply_phase_overrides(instance.phases, overrides, template)
"""

from __future__ import annotations

import copy
import logging

from app.core.exceptions import ConfigurationError, ValidationError
from app.services.decision_schemas import (
    DecisionSchemaDefinition,
    PhaseDefinition,
    strip_ui_schema,
)
from app.services.schema_validator import schema_validator
from app.utils.helpers import parse_datetime, to_iso

logger = logging.getLogger(__name__)

OVERRIDE_KEYS = ("startDate", "endDate", "settings", "rules")


def _merge(base: dict | None, patch: dict | None) -> dict:
    """Recursive dict merge; ``patch`` wins, nested dicts are merged."""
    out = copy.deepcopy(base or {})
    for key, value in (patch or {}).items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def _settings_defaults(schema: dict | None) -> dict:
    properties = (schema or {}).get("properties") or {}
    return {
        key: copy.deepcopy(prop["default"])
        for key, prop in properties.items()
        if isinstance(prop, dict) and "default" in prop
    }


def _index_overrides(overrides, template: DecisionSchemaDefinition) -> dict[str, dict]:
    """Normalise overrides to ``{phaseId: override}`` and reject unknown phases."""
    if not overrides:
        return {}
    if isinstance(overrides, dict):
        items = [dict(v, phaseId=k) for k, v in overrides.items()]
    else:
        items = list(overrides)

    indexed: dict[str, dict] = {}
    for item in items:
        if not isinstance(item, dict) or not item.get("phaseId"):
            raise ConfigurationError("Every phase override needs a 'phaseId'")
        phase_id = item["phaseId"]
        if template.phase(phase_id) is None:
            raise ConfigurationError(
                f"Phase '{phase_id}' does not exist in template '{template.id}'",
                phase_id=phase_id,
            )
        indexed[phase_id] = item
    return indexed


def _normalise_dates(phase: dict, errors: dict) -> None:
    for key in ("startDate", "endDate"):
        raw = phase.get(key)
        if raw in (None, ""):
            phase[key] = None
            continue
        parsed = parse_datetime(raw)
        if parsed is None:
            errors[f"{phase['phaseId']}.{key}"] = f"{key} is not a valid date"
        else:
            phase[key] = to_iso(parsed)

    start, end = parse_datetime(phase.get("startDate")), parse_datetime(phase.get("endDate"))
    if start and end and end < start:
        errors[f"{phase['phaseId']}.endDate"] = "endDate must not be before startDate"


def _validate_settings(phase_id: str, schema: dict | None, settings: dict, errors: dict) -> None:
    if not schema:
        return
    result = schema_validator.validate(strip_ui_schema(schema), settings)
    for field_path, message in result.errors.items():
        errors[f"{phase_id}.settings.{field_path}"] = message


def _materialize_phase(
    template_phase: PhaseDefinition,
    existing: dict | None,
    override: dict | None,
    errors: dict,
) -> dict:
    if existing is not None:
        phase = copy.deepcopy(existing)
    else:
        phase = {
            "phaseId": template_phase.id,
            "name": template_phase.name,
            "description": template_phase.description,
            "rules": copy.deepcopy(template_phase.rules),
            "startDate": None,
            "endDate": None,
            "settings": _settings_defaults(template_phase.settings),
        }
        if template_phase.selection_pipeline is not None:
            phase["selectionPipeline"] = copy.deepcopy(template_phase.selection_pipeline)

    if not override:
        _normalise_dates(phase, errors)
        return phase

    if "startDate" in override:
        phase["startDate"] = override["startDate"]
    if "endDate" in override:
        phase["endDate"] = override["endDate"]
    if override.get("rules") is not None:
        if not isinstance(override["rules"], dict):
            raise ConfigurationError(
                f"Phase '{template_phase.id}' rules override must be an object",
                phase_id=template_phase.id,
            )
        phase["rules"] = _merge(phase.get("rules"), override["rules"])
    if override.get("settings") is not None:
        if not isinstance(override["settings"], dict):
            errors[f"{template_phase.id}.settings"] = "settings must be an object"
        else:
            phase["settings"] = _merge(phase.get("settings"), override["settings"])
            _validate_settings(template_phase.id, template_phase.settings, phase["settings"], errors)

    _normalise_dates(phase, errors)
    return phase


def _raise_if_invalid(errors: dict, template_id: str) -> None:
    if errors:
        summary = ", ".join(f"{k}: {v}" for k, v in errors.items())
        logger.info("Rejected phase overrides for template %s: %s", template_id, summary)
        raise ValidationError(f"Invalid phase configuration: {summary}", errors)


def materialize_instance(
    template: DecisionSchemaDefinition,
    overrides=None,
    *,
    config: dict | None = None,
    proposal_template: dict | None = None,
) -> dict:
    """Build instance data for a new process from ``template``.

    ``overrides`` is a list of ``{phaseId, startDate?, endDate?, settings?, rules?}``
    (or a dict keyed by phase id).

    Raises:
        ConfigurationError: template without phases, override for an unknown phase.
        ValidationError:    an override's settings or dates are invalid.
    """
    if not template.phases:
        raise ConfigurationError(f"Template '{template.id}' has no phases")

    indexed = _index_overrides(overrides, template)
    errors: dict[str, str] = {}
    phases = [
        _materialize_phase(tp, None, indexed.get(tp.id), errors)
        for tp in template.phases
    ]
    _raise_if_invalid(errors, template.id)

    instance_data = {
        "templateId": template.id,
        "templateVersion": template.version,
        "currentPhaseId": phases[0]["phaseId"],
        "phases": phases,
        "config": _merge(template.config, config),
    }
    chosen_proposal_template = proposal_template if proposal_template is not None else template.proposal_template
    if chosen_proposal_template is not None:
        instance_data["proposalTemplate"] = copy.deepcopy(chosen_proposal_template)
    if template.rubric_template is not None:
        instance_data["rubricTemplate"] = copy.deepcopy(template.rubric_template)

    logger.debug("Materialized %d phases from template %s", len(phases), template.id)
    return instance_data


def apply_phase_overrides(
    phases: list[dict],
    overrides,
    template: DecisionSchemaDefinition,
) -> list[dict]:
    """Return a new phase list with ``overrides`` merged into existing phases.

    Settings are merged with what the instance already holds, then the merged
    value is re-validated. Phases the override list does not mention are
    returned unchanged.
    """
    indexed = _index_overrides(overrides, template)
    errors: dict[str, str] = {}
    updated = []
    for phase in phases:
        override = indexed.get(phase.get("phaseId"))
        if not override:
            updated.append(copy.deepcopy(phase))
            continue
        template_phase = template.phase(phase["phaseId"])
        updated.append(_materialize_phase(template_phase, phase, override, errors))
    _raise_if_invalid(errors, template.id)
    return updated
