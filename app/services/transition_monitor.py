"""
Transition Monitor

Stateless batch job that applies due scheduled transitions exactly once.

Flow:
    1. Query uncompleted transitions with ``scheduled_date <= now`` belonging
       to published instances, ordered by scheduled date.
    2. Group by process instance. A group is processed strictly in order;
       groups run in parallel up to ``TRANSITION_MONITOR_CONCURRENCY``.
    3. Immediately before acting, re-read the transition and its instance.
       An already-completed transition is a successful no-op.
    4. Mark the transition completed with a conditional
       ``UPDATE ... WHERE completed_at IS NULL`` and move the instance pointer
       in the same commit. Zero affected rows means another worker won.
       Only ``current_phase_id`` and ``currentPhaseId`` are written; phase
       dates and settings belong to the owner and are left as stored.
    5. A failing transition is recorded and the batch carries on.

All coordination lives in the database; overlapping invocations are safe.
The instance's phase index never decreases: a transition whose target is not
ahead of the current phase is completed without moving the instance, and one
whose source phase has not been reached yet is deferred.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from flask import current_app
from sqlalchemy import JSON, Text, cast, func, literal, update
from sqlalchemy.dialects.postgresql import ARRAY, JSONB

from app.core.exceptions import ConfigurationError, NotFoundError, StateError
from app.models import db
from app.models.decision import ProcessInstance, ScheduledTransition
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

APPLIED = "applied"
ALREADY_COMPLETED = "already_completed"
STALE = "stale"
DEFERRED = "deferred"

_DEFAULT_CONCURRENCY = 5


def _query_due_transitions(now: datetime) -> list[tuple[str, str]]:
    """(transition id, instance id) pairs that are due, oldest first."""
    rows = (
        db.session.query(ScheduledTransition.id, ScheduledTransition.process_instance_id)
        .join(ProcessInstance, ProcessInstance.id == ScheduledTransition.process_instance_id)
        .filter(
            ScheduledTransition.completed_at.is_(None),
            ScheduledTransition.scheduled_date <= now,
            ProcessInstance.status == "published",
        )
        .order_by(ScheduledTransition.scheduled_date.asc(), ScheduledTransition.id.asc())
        .all()
    )
    return [(row[0], row[1]) for row in rows]


def _group_by_instance(due: list[tuple[str, str]]) -> OrderedDict:
    groups: OrderedDict[str, list[str]] = OrderedDict()
    for transition_id, instance_id in due:
        groups.setdefault(instance_id, []).append(transition_id)
    return groups


def _mark_completed(transition_id: str, now: datetime) -> bool:
    """Conditional completion write. False when another worker got there first."""
    result = db.session.execute(
        update(ScheduledTransition)
        .where(
            ScheduledTransition.id == transition_id,
            ScheduledTransition.completed_at.is_(None),
        )
        .values(completed_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _patched_instance_data(phase_id: str):
    """SQL expression replacing only ``currentPhaseId`` inside ``instance_data``."""
    column = ProcessInstance.instance_data
    if db.engine.dialect.name == "postgresql":
        patched = func.jsonb_set(
            cast(column, JSONB),
            literal(["currentPhaseId"], ARRAY(Text)),
            func.to_jsonb(cast(phase_id, Text)),
        )
        return cast(patched, JSON)
    return func.json_set(column, "$.currentPhaseId", phase_id)


def _write_current_phase(instance_id: str, expected_phase_id: str, phase_id: str) -> bool:
    """Move the phase pointer and its JSON mirror, nothing else.

    Owner edits to the rest of ``instance_data`` committed in the meantime are
    kept. False when the pointer is no longer ``expected_phase_id``.
    """
    result = db.session.execute(
        update(ProcessInstance)
        .where(
            ProcessInstance.id == instance_id,
            ProcessInstance.current_phase_id == expected_phase_id,
        )
        .values(current_phase_id=phase_id, instance_data=_patched_instance_data(phase_id))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _apply_transition(transition_id: str, now: datetime, retry: bool = True) -> str:
    """Apply one transition atomically and return its outcome."""
    transition = db.session.get(ScheduledTransition, transition_id, populate_existing=True)
    if transition is None:
        raise NotFoundError(resource="ScheduledTransition", resource_id=transition_id)

    log_extra = {"transition_id": transition.id, "process_instance_id": transition.process_instance_id}
    if transition.is_completed:
        logger.info("Transition %s already completed, skipping", transition.id, extra=log_extra)
        return ALREADY_COMPLETED

    instance = db.session.get(
        ProcessInstance, transition.process_instance_id,
        populate_existing=True, with_for_update=True,
    )
    if instance is None:
        raise NotFoundError(resource="ProcessInstance", resource_id=transition.process_instance_id)

    current_index = instance.phase_index(instance.current_phase_id)
    from_index = instance.phase_index(transition.from_phase_id)
    to_index = instance.phase_index(transition.to_phase_id)
    if to_index < 0 or from_index < 0:
        raise ConfigurationError(
            f"Transition {transition.from_phase_id}→{transition.to_phase_id} references a phase "
            f"missing from process instance {instance.id}",
            process_instance_id=instance.id,
            phase_id=transition.to_phase_id if to_index < 0 else transition.from_phase_id,
        )

    if from_index > current_index:
        db.session.rollback()
        logger.info(
            "Deferring transition %s: instance %s is still in phase %s",
            transition.id, instance.id, instance.current_phase_id, extra=log_extra,
        )
        return DEFERRED

    try:
        if not _mark_completed(transition.id, now):
            db.session.rollback()
            logger.info("Transition %s completed by another worker", transition.id, extra=log_extra)
            return ALREADY_COMPLETED

        if to_index <= current_index:
            db.session.commit()
            logger.info(
                "Transition %s is behind instance %s (phase %s), completed without moving",
                transition.id, instance.id, instance.current_phase_id, extra=log_extra,
            )
            return STALE

        moved = _write_current_phase(instance.id, instance.current_phase_id, transition.to_phase_id)
        if moved:
            db.session.commit()
        else:
            db.session.rollback()
    except Exception:
        db.session.rollback()
        raise

    if not moved:
        if retry:
            logger.info(
                "Instance %s moved while applying transition %s, re-reading",
                instance.id, transition.id, extra=log_extra,
            )
            return _apply_transition(transition_id, now, retry=False)
        raise StateError(
            f"Process instance {instance.id} kept moving while applying transition {transition.id}",
            current=instance.current_phase_id,
        )

    logger.info(
        "Advanced process instance %s %s→%s",
        instance.id, transition.from_phase_id, transition.to_phase_id, extra=log_extra,
    )
    if to_index == len(instance.phases) - 1:
        logger.info(
            "Process instance %s reached its final phase %s",
            instance.id, transition.to_phase_id, extra=log_extra,
        )
    return APPLIED


def _process_group(instance_id: str, transition_ids: list[str], now: datetime) -> dict:
    outcome = {"processed": 0, "failed": 0, "deferred": 0, "errors": []}
    for transition_id in transition_ids:
        try:
            status = _apply_transition(transition_id, now)
        except Exception as exc:
            db.session.rollback()
            logger.exception(
                "Failed to process transition %s for instance %s", transition_id, instance_id,
                extra={"transition_id": transition_id, "process_instance_id": instance_id},
            )
            outcome["failed"] += 1
            outcome["errors"].append({
                "transition_id": transition_id,
                "process_instance_id": instance_id,
                "error": str(exc),
            })
            continue
        if status == DEFERRED:
            outcome["deferred"] += 1
        else:
            outcome["processed"] += 1
    return outcome


def _process_group_in_context(app, instance_id: str, transition_ids: list[str], now: datetime) -> dict:
    with app.app_context():
        return _process_group(instance_id, transition_ids, now)


def process_decision_transitions(now: datetime | None = None) -> dict:
    """Apply every due transition once.

    Returns:
        {"processed": int, "failed": int, "deferred": int, "errors": [
            {"transition_id", "process_instance_id", "error"}, ...]}
    """
    start = time.monotonic()
    now = now or utcnow()
    groups = _group_by_instance(_query_due_transitions(now))
    # Release the read transaction before workers start writing.
    db.session.commit()

    concurrency = int(current_app.config.get("TRANSITION_MONITOR_CONCURRENCY") or _DEFAULT_CONCURRENCY)
    if concurrency <= 1 or len(groups) <= 1:
        outcomes = [_process_group(iid, tids, now) for iid, tids in groups.items()]
    else:
        app = current_app._get_current_object()
        with ThreadPoolExecutor(max_workers=concurrency) as pool:
            futures = [
                pool.submit(_process_group_in_context, app, iid, tids, now)
                for iid, tids in groups.items()
            ]
            outcomes = [f.result() for f in futures]

    result = {"processed": 0, "failed": 0, "deferred": 0, "errors": []}
    for outcome in outcomes:
        result["processed"] += outcome["processed"]
        result["failed"] += outcome["failed"]
        result["deferred"] += outcome["deferred"]
        result["errors"].extend(outcome["errors"])

    duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "Transition monitor run: processed=%d failed=%d deferred=%d instances=%d",
        result["processed"], result["failed"], result["deferred"], len(groups),
        extra={"duration_ms": duration_ms},
    )
    return result
