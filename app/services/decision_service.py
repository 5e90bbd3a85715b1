"""
Decision instance lifecycle.

    create_instance_from_template  - materialize + persist (+ schedule when published)
    get_instance                   - lookup or NotFoundError
    update_decision_instance       - merge overrides, reconcile transitions, one commit
    advance_phase                  - manual advancement to the next phase
    list_transitions               - scheduled transitions of an instance

The monitor writes only the phase pointer and owners only edit phase
configuration. Owner writes load the row with a row lock where the database
has one; otherwise the later write to a field wins.
"""

from __future__ import annotations

import copy
import logging

from sqlalchemy import update

from app.core.exceptions import NotFoundError, StateError, ValidationError
from app.models import db
from app.models.decision import PROCESS_STATUSES, ProcessInstance, ScheduledTransition
from app.services.decision_schemas import strip_ui_schema
from app.services.instance_materializer import apply_phase_overrides, materialize_instance
from app.services.schema_registry import get_template
from app.services.schema_validator import schema_validator
from app.services.transition_scheduler import (
    create_transitions_for_process,
    remove_pending_transitions,
    update_transitions_for_process,
)
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 255


def _check_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required", {"name": "Name is required"})
    name = name.strip()
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(
            "name is too long",
            {"name": f"Name cannot exceed {NAME_MAX_LENGTH} characters"},
        )
    return name


def _check_status(status) -> str:
    if status not in PROCESS_STATUSES:
        allowed = ", ".join(sorted(PROCESS_STATUSES))
        raise ValidationError(
            f"Invalid status '{status}'",
            {"status": f"Status must be one of: {allowed}"},
        )
    return status


def get_instance(instance_id: str, lock: bool = False) -> ProcessInstance:
    """Load an instance. ``lock`` takes a row lock where the database supports one."""
    if lock:
        instance = db.session.get(ProcessInstance, instance_id, with_for_update=True, populate_existing=True)
    else:
        instance = db.session.get(ProcessInstance, instance_id)
    if instance is None:
        raise NotFoundError(resource="ProcessInstance", resource_id=instance_id)
    return instance


def create_instance_from_template(
    template_id: str,
    *,
    name: str,
    description: str = "",
    phases=None,
    config: dict | None = None,
    proposal_template: dict | None = None,
    status: str = "draft",
    profile_id: str | None = None,
    owner_profile_id: str | None = None,
) -> ProcessInstance:
    """Create a process instance from a stored or built-in template.

    Transitions are created in the same commit when the instance starts out
    published.

    Raises:
        NotFoundError:      unknown template.
        ConfigurationError: bad override or a date-based phase without end date.
        ValidationError:    invalid name, status, settings or proposal template.
    """
    name = _check_name(name)
    status = _check_status(status)
    template = get_template(template_id)
    if proposal_template is not None:
        schema_validator.assert_valid_schema(strip_ui_schema(proposal_template), label="proposalTemplate")

    instance_data = materialize_instance(
        template, phases, config=config, proposal_template=proposal_template,
    )
    instance = ProcessInstance(
        process_template_id=template.id,
        name=name,
        description=description or "",
        current_phase_id=instance_data["currentPhaseId"],
        instance_data=instance_data,
        status=status,
        profile_id=profile_id,
        owner_profile_id=owner_profile_id,
    )
    try:
        db.session.add(instance)
        db.session.flush()
        if status == "published":
            create_transitions_for_process(instance, commit=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Created process instance %s from template %s [%s]",
        instance.id, template.id, status,
        extra={"process_instance_id": instance.id},
    )
    return instance


def update_decision_instance(
    instance_id: str,
    *,
    name: str | None = None,
    description: str | None = None,
    status: str | None = None,
    config: dict | None = None,
    phases=None,
    proposal_template: dict | None = None,
) -> tuple[ProcessInstance, dict | None]:
    """Apply owner edits and reconcile transitions in one transaction.

    - ``config`` is merged into the existing config
    - ``phases`` overrides are merged per phase (settings re-validated)
    - ``proposal_template`` replaces the existing one after a pre-flight check
    - final status ``draft`` removes pending transitions; a published
      instance whose phases or status changed is reconciled

    Returns:
        (instance, transition counts or None when nothing was reconciled)
    """
    instance = get_instance(instance_id, lock=True)
    previous_status = instance.status

    # Everything is checked before the row is touched.
    name = _check_name(name) if name is not None else None
    status = _check_status(status) if status is not None else None

    data = copy.deepcopy(instance.instance_data or {})
    if config is not None:
        data["config"] = {**(data.get("config") or {}), **config}
    if phases:
        template = get_template(instance.process_template_id)
        data["phases"] = apply_phase_overrides(data.get("phases") or [], phases, template)
    if proposal_template is not None:
        schema_validator.assert_valid_schema(strip_ui_schema(proposal_template), label="proposalTemplate")
        data["proposalTemplate"] = copy.deepcopy(proposal_template)

    if name is not None:
        instance.name = name
    if description is not None:
        instance.description = description
    if status is not None:
        instance.status = status
    if data != instance.instance_data:
        instance.instance_data = data

    counts = None
    try:
        db.session.flush()
        if instance.status == "draft":
            counts = {"deleted": remove_pending_transitions(instance, commit=False)}
        elif instance.status == "published" and (phases or previous_status != "published"):
            counts = update_transitions_for_process(instance, commit=False)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Updated process instance %s status=%s",
        instance.id, instance.status,
        extra={"process_instance_id": instance.id},
    )
    return instance, counts


def advance_phase(instance_id: str) -> ProcessInstance:
    """Move a published instance to its next phase by explicit action.

    A pending transition for the same pair is marked completed so the
    monitor does not apply it a second time.

    Raises:
        StateError: instance not published or already in its final phase.
    """
    instance = get_instance(instance_id, lock=True)
    if instance.status != "published":
        raise StateError(
            f"Process instance {instance.id} is {instance.status}; only published instances advance",
            current=instance.status,
        )

    phases = instance.phases
    index = instance.phase_index(instance.current_phase_id)
    if index < 0:
        raise StateError(
            f"Process instance {instance.id} points at unknown phase {instance.current_phase_id}",
            current=instance.current_phase_id,
        )
    if index >= len(phases) - 1:
        raise StateError(
            f"Process instance {instance.id} is already in its final phase",
            current=instance.current_phase_id,
        )

    from_phase_id = instance.current_phase_id
    to_phase_id = phases[index + 1]["phaseId"]
    try:
        db.session.execute(
            update(ScheduledTransition)
            .where(
                ScheduledTransition.process_instance_id == instance.id,
                ScheduledTransition.from_phase_id == from_phase_id,
                ScheduledTransition.to_phase_id == to_phase_id,
                ScheduledTransition.completed_at.is_(None),
            )
            .values(completed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        instance.set_current_phase(to_phase_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Manually advanced process instance %s %s→%s",
        instance.id, from_phase_id, to_phase_id,
        extra={"process_instance_id": instance.id, "phase_id": to_phase_id},
    )
    if index + 1 == len(phases) - 1:
        logger.info("Process instance %s reached its final phase %s", instance.id, to_phase_id)
    return instance


def list_transitions(instance_id: str) -> list[ScheduledTransition]:
    instance = get_instance(instance_id)
    return (
        instance.transitions
        .order_by(ScheduledTransition.scheduled_date.asc(), ScheduledTransition.from_phase_id.asc())
        .all()
    )
