"""
Decision Process Engine
Blueprint registry helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from app.core.exceptions import (
    ConfigurationError,
    NotFoundError,
    ServiceUnavailableError,
    StateError,
    ValidationError,
)
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def json_body() -> dict:
    """Request JSON as a dict; anything else becomes ``{}``."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def register_error_handlers(bp) -> None:
    """Map the service exception taxonomy onto HTTP responses for ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_FIELDS, str(error), details=error.details)

    @bp.errorhandler(ConfigurationError)
    def _handle_configuration(error: ConfigurationError):
        details = {
            k: v for k, v in (
                ("process_instance_id", error.process_instance_id),
                ("phase_id", error.phase_id),
            ) if v
        }
        return api_error(E.CONFIGURATION, str(error), details=details)

    @bp.errorhandler(StateError)
    def _handle_state(error: StateError):
        details = {"current": error.current} if error.current else None
        return api_error(E.CONFLICT_STATE, str(error), details=details)

    @bp.errorhandler(ServiceUnavailableError)
    def _handle_unavailable(error: ServiceUnavailableError):
        return api_error(E.UNAVAILABLE, str(error), details={"service": error.service})

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
