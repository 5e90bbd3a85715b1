"""
Decision Process Engine
Scheduler Service.

Job registry and runner for background work. Triggering is external (cron,
a platform scheduler hitting the trigger endpoint, or the
``flask process-transitions`` command); this module only knows how to run a
registered job inside an app context and record the outcome.

Architecture:
    - @register_job("name") adds a job function ``fn(app) -> dict``
    - ScheduledJob rows persist schedule config and last-run results
    - run_job never raises: failures are recorded on the row
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from flask import Flask

from app.models import db
from app.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}

_DEFAULT_SCHEDULES = {
    "decision_transition_monitor": {"minute": "*/5", "description": "Every 5 minutes"},
}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("decision_transition_monitor")
        def run_transition_monitor(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


def _get_default_schedule(job_name: str) -> dict:
    return dict(_DEFAULT_SCHEDULES.get(
        job_name, {"hour": "0", "minute": "0", "description": "Daily at midnight"},
    ))


class SchedulerService:
    """Registers job rows and executes jobs within the Flask app context."""

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a ScheduledJob row for every registered job that lacks one."""
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                if ScheduledJob.query.filter_by(job_name=name).first():
                    continue
                job = ScheduledJob(
                    job_name=name,
                    description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                    schedule_type="cron",
                    schedule_config=_get_default_schedule(name),
                    status="active",
                    is_enabled=True,
                )
                db.session.add(job)
                created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str, *, force: bool = False) -> dict:
        """Execute a registered job and record the run.

        A disabled job is skipped unless ``force`` is set (manual trigger).

        Returns:
            {"job_name", "status", "duration_ms", "result", "error"}
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        with cls._app.app_context():
            record = ScheduledJob.query.filter_by(job_name=job_name).first()
            if record is not None and not record.is_enabled and not force:
                logger.info("Job %s is disabled, skipping", job_name, extra={"job_name": job_name})
                return {"job_name": job_name, "status": "skipped", "duration_ms": 0,
                        "result": None, "error": None}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})

        duration_ms = int((time.monotonic() - start) * 1000)
        if status == "success" and isinstance(result, dict) and result.get("failed"):
            status = "partial"

        try:
            with cls._app.app_context():
                record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if record:
                    record.record_run(
                        status="failed" if status == "failed" else "success",
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", job_name)

        logger.info(
            "Job %s finished status=%s", job_name, status,
            extra={"job_name": job_name, "duration_ms": duration_ms},
        )
        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        jobs = []
        for name in _job_registry:
            record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": record.to_dict() if record else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        record = ScheduledJob.query.filter_by(job_name=job_name).first()
        return record.to_dict() if record else None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a job. Returns None for an unknown job row."""
        record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not record:
            return None
        record.is_enabled = enabled
        record.status = "active" if enabled else "paused"
        db.session.commit()
        return record.to_dict()
