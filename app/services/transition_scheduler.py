"""
Transition Scheduler

Keeps ``decision_process_transitions`` consistent with an instance's phase
configuration.

Expected set: for each adjacent pair (phase[i], phase[i+1]) whose earlier
phase advances by ``date``, one transition scheduled at phase[i]'s effective
end date. The last phase never produces a transition. A date-based phase
without an end date is a ConfigurationError, never a silent skip.

Reconciliation, matched on the (from, to) pair:

    existing  expected  completed   action
    ───────── ───────── ─────────── ──────────────────────────────
    yes       yes       -           same date → no-op
    yes       yes       no          new date  → update in place
    yes       yes       yes         leave untouched
    no        yes       -           insert
    yes       no        no          delete
    yes       no        yes         leave untouched

Inserts and deletes touch disjoint keys and are flushed in the same session,
so they commit together or not at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from app.core.exceptions import ConfigurationError
from app.models import db
from app.models.decision import ProcessInstance, ScheduledTransition
from app.services.decision_schemas import (
    DecisionSchemaDefinition,
    effective_advancement_method,
    effective_end_date,
)
from app.services.schema_registry import find_template
from app.utils.helpers import as_utc, parse_datetime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExpectedTransition:
    from_phase_id: str
    to_phase_id: str
    scheduled_date: datetime

    @property
    def key(self) -> tuple[str, str]:
        return self.from_phase_id, self.to_phase_id


def build_expected_transitions(
    instance: ProcessInstance,
    template: DecisionSchemaDefinition | None = None,
) -> list[ExpectedTransition]:
    """Derive the transitions the instance's current phase configuration implies.

    Raises:
        ConfigurationError: a date-based phase has no (parseable) end date.
    """
    phases = instance.phases
    expected: list[ExpectedTransition] = []

    for current, following in zip(phases, phases[1:]):
        phase_id = current.get("phaseId")
        template_phase = template.phase(phase_id) if template else None
        if effective_advancement_method(current, template_phase) != "date":
            continue

        raw_end = effective_end_date(current, template_phase)
        scheduled = parse_datetime(raw_end)
        if scheduled is None:
            detail = "has no end date" if not raw_end else f"has an invalid end date '{raw_end}'"
            raise ConfigurationError(
                f"Phase '{phase_id}' of process instance {instance.id} uses date-based "
                f"advancement but {detail}",
                process_instance_id=instance.id,
                phase_id=phase_id,
            )
        expected.append(ExpectedTransition(phase_id, following.get("phaseId"), scheduled))

    return expected


def _template_for(instance: ProcessInstance) -> DecisionSchemaDefinition | None:
    return find_template(instance.process_template_id)


def _commit_or_flush(commit: bool) -> None:
    if commit:
        db.session.commit()
    else:
        db.session.flush()


def create_transitions_for_process(instance: ProcessInstance, *, commit: bool = True) -> dict:
    """Insert the expected transitions of a freshly published instance.

    Pairs that already have a row are left alone and counted as skipped.

    Returns:
        {"created": [ScheduledTransition, ...], "skipped": int}
    """
    expected = build_expected_transitions(instance, _template_for(instance))
    existing = {t.key for t in instance.transitions}

    created: list[ScheduledTransition] = []
    skipped = 0
    try:
        for item in expected:
            if item.key in existing:
                skipped += 1
                continue
            transition = ScheduledTransition(
                process_instance_id=instance.id,
                from_phase_id=item.from_phase_id,
                to_phase_id=item.to_phase_id,
                scheduled_date=item.scheduled_date,
            )
            db.session.add(transition)
            created.append(transition)
        _commit_or_flush(commit)
    except Exception:
        if commit:
            db.session.rollback()
        raise

    logger.info(
        "Created %d transition(s) for process instance %s",
        len(created), instance.id,
        extra={"process_instance_id": instance.id},
    )
    return {"created": created, "skipped": skipped}


def update_transitions_for_process(instance: ProcessInstance, *, commit: bool = True) -> dict:
    """Reconcile persisted transitions with the instance's phase configuration.

    Returns:
        {"created": int, "updated": int, "deleted": int, "skipped": int, "unchanged": int}
        ``skipped`` counts completed transitions left untouched although the
        configuration no longer matches them.
    """
    expected = {t.key: t for t in build_expected_transitions(instance, _template_for(instance))}
    existing = {t.key: t for t in instance.transitions}

    counts = {"created": 0, "updated": 0, "deleted": 0, "skipped": 0, "unchanged": 0}
    try:
        to_insert = [item for key, item in expected.items() if key not in existing]
        to_delete = [t for key, t in existing.items() if key not in expected and not t.is_completed]

        for key, transition in existing.items():
            item = expected.get(key)
            if item is None:
                if transition.is_completed:
                    counts["skipped"] += 1
                continue
            if as_utc(transition.scheduled_date) == item.scheduled_date:
                counts["unchanged"] += 1
            elif transition.is_completed:
                logger.info(
                    "Ignoring date change for completed transition %s→%s on instance %s",
                    transition.from_phase_id, transition.to_phase_id, instance.id,
                    extra={"process_instance_id": instance.id, "transition_id": transition.id},
                )
                counts["skipped"] += 1
            else:
                transition.scheduled_date = item.scheduled_date
                counts["updated"] += 1

        for item in to_insert:
            db.session.add(ScheduledTransition(
                process_instance_id=instance.id,
                from_phase_id=item.from_phase_id,
                to_phase_id=item.to_phase_id,
                scheduled_date=item.scheduled_date,
            ))
        for transition in to_delete:
            db.session.delete(transition)
        counts["created"] = len(to_insert)
        counts["deleted"] = len(to_delete)

        _commit_or_flush(commit)
    except Exception:
        if commit:
            db.session.rollback()
        raise

    logger.info(
        "Reconciled transitions for process instance %s: created=%d updated=%d deleted=%d skipped=%d",
        instance.id, counts["created"], counts["updated"], counts["deleted"], counts["skipped"],
        extra={"process_instance_id": instance.id},
    )
    return counts


def remove_pending_transitions(instance: ProcessInstance, *, commit: bool = True) -> int:
    """Delete every uncompleted transition of ``instance``. Returns the count."""
    pending = instance.transitions.filter(ScheduledTransition.completed_at.is_(None)).all()
    for transition in pending:
        db.session.delete(transition)
    _commit_or_flush(commit)
    if pending:
        logger.info(
            "Removed %d pending transition(s) for process instance %s",
            len(pending), instance.id,
            extra={"process_instance_id": instance.id},
        )
    return len(pending)
