"""
Decision-engine exception hierarchy.

All services raise these types; blueprints register one handler per type and
get consistent HTTP status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ProcessInstance", resource_id=instance_id)
    raise ValidationError("Budget is required", details={"budget": "Budget is required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "ProcessInstance", "Proposal").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when submitted data fails schema or business-rule validation.

    Always recoverable by the caller supplying corrected data.
    Maps to HTTP 422.

    Args:
        message: Human-readable summary (all field errors concatenated).
        details: Field-level breakdown; keys are field paths, values are
                 ready-to-display messages.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(Exception):
    """Raised when a process template or instance phase configuration is invalid.

    Fatal to the operation that discovered it (e.g. a date-based phase
    without an end date). Carries the instance and phase ids so an
    administrator can locate the problem.

    Maps to HTTP 400.
    """

    def __init__(
        self,
        message: str,
        *,
        process_instance_id: str | None = None,
        phase_id: str | None = None,
    ) -> None:
        self.process_instance_id = process_instance_id
        self.phase_id = phase_id
        super().__init__(message)


class StateError(Exception):
    """Raised when an action is illegal in the entity's current state.

    Examples: submitting a proposal that is not a draft, advancing an
    instance that already sits in its final phase, creating a proposal in a
    phase whose rules forbid it.

    Maps to HTTP 409.
    """

    def __init__(self, message: str, current: str | None = None) -> None:
        self.current = current
        super().__init__(message)


class ServiceUnavailableError(Exception):
    """Raised when an external dependency required for a correctness-critical
    check cannot be reached, so the operation fails closed.

    Maps to HTTP 503.
    """

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        super().__init__(f"{service} unavailable: {message}")
