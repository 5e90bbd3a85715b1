"""
Decision Process Engine
Scheduled Jobs.

Jobs:
    - decision_transition_monitor: applies due scheduled phase transitions
"""

from __future__ import annotations

import logging
from typing import Any

from app.services.scheduler_service import register_job
from app.services.transition_monitor import process_decision_transitions

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job: Decision Transition Monitor
# ═══════════════════════════════════════════════════════════════════════════

@register_job("decision_transition_monitor")
def run_transition_monitor(app) -> dict[str, Any]:
    """Apply due decision process phase transitions."""
    result = process_decision_transitions()
    if result["failed"]:
        logger.warning(
            "Transition monitor finished with %d failure(s)", result["failed"],
            extra={"job_name": "decision_transition_monitor"},
        )
    return result
