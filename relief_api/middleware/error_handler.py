# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Error taxonomy and top-level error handling with structured problem responses.

The routing layer wraps every coordinator call with ErrorHandlerMiddleware.run
so that each failure reaches the client as a problem-details object with a
stable kind indicator.
"""

from typing import Dict, Any, List, Optional, Tuple, Callable, Awaitable
from opentelemetry import trace
import logging
import traceback

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

DEFAULT_PROBLEM_BASE = "https://relief.local/problems"


class ReliefError(Exception):
    """Base class for custom application exceptions."""

    def __init__(self, message: str, status_code: int = 500, error_type: str = "application-error"):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type


class ValidationError(ReliefError):
    """Missing or malformed required input."""

    def __init__(self, message: str, validation_errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message, 400, "validation-error")
        self.validation_errors = validation_errors or []

    @classmethod
    def from_pydantic(cls, error, message: str = "Invalid request") -> "ValidationError":
        """Wrap a pydantic ValidationError, keeping per-field details."""
        details = [
            {
                "field": ".".join(str(part) for part in item.get("loc", ())),
                "message": item.get("msg", ""),
                "type": item.get("type", "")
            }
            for item in error.errors()
        ]
        return cls(message, details)


class NotFoundError(ReliefError):
    """Referenced entity does not exist."""

    def __init__(self, message: str):
        super().__init__(message, 404, "resource-not-found")


class ConflictError(ReliefError):
    """Optimistic version check failed."""

    def __init__(self, message: str):
        super().__init__(message, 409, "resource-conflict")


class UpstreamError(ReliefError):
    """Store or network collaborator failure."""

    def __init__(self, message: str):
        super().__init__(message, 502, "upstream-error")


class CacheFault(ReliefError):
    """Cache read or write failure. Never surfaced; callers treat it as a miss."""

    def __init__(self, message: str):
        super().__init__(message, 500, "cache-fault")


_TITLES = {
    "validation-error": "Validation Error",
    "resource-not-found": "Resource Not Found",
    "resource-conflict": "Resource Conflict",
    "upstream-error": "Upstream Failure",
    "internal-server-error": "Internal Server Error",
}


class ErrorHandlerMiddleware:
    """Centralized error handling with problem-details formatting."""

    def __init__(self, problem_base: str = DEFAULT_PROBLEM_BASE):
        self.problem_base = problem_base.rstrip("/")

    def build_error_response(
        self,
        error_type: str,
        status: int,
        detail: str,
        instance: str,
        validation_errors: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """Build RFC 7807 style error body."""
        error_response = {
            'type': f"{self.problem_base}/{error_type}",
            'kind': error_type,
            'title': _TITLES.get(error_type, "Application Error"),
            'status': status,
            'detail': detail,
            'instance': instance
        }

        if validation_errors:
            error_response['errors'] = validation_errors

        return error_response

    def handle(self, error: Exception, instance: str = "") -> Tuple[Dict[str, Any], int]:
        """
        Convert an exception into an error body and status code.

        Args:
            error: Exception raised by an operation
            instance: Identifier of the failed operation (path or name)

        Returns:
            Tuple of (error response dict, status code)
        """
        if isinstance(error, CacheFault):
            # Cache faults are handled inside the cache; reaching here is a bug.
            return self.handle_unexpected_error(error, instance)
        if isinstance(error, UpstreamError):
            return self.handle_server_error(error, instance)
        if isinstance(error, ReliefError):
            return self.handle_client_error(error, instance)
        return self.handle_unexpected_error(error, instance)

    def handle_client_error(self, error: ReliefError, instance: str) -> Tuple[Dict[str, Any], int]:
        """Handle client faults (4xx)."""
        with tracer.start_as_current_span("error_handler.client_error") as span:
            span.set_attributes({
                "error.type": error.error_type,
                "error.status": error.status_code,
                "operation": instance
            })

            logger.warning(
                f"Client error: {error.error_type}",
                extra={
                    "extra_fields": {
                        "error_type": error.error_type,
                        "status_code": error.status_code,
                        "detail": error.message,
                        "instance": instance
                    }
                }
            )

            return self.build_error_response(
                error.error_type,
                error.status_code,
                error.message,
                instance,
                getattr(error, "validation_errors", None)
            ), error.status_code

    def handle_server_error(self, error: ReliefError, instance: str) -> Tuple[Dict[str, Any], int]:
        """Handle collaborator failures (5xx with the underlying message)."""
        with tracer.start_as_current_span("error_handler.server_error") as span:
            span.set_attributes({
                "error.type": error.error_type,
                "error.status": error.status_code,
                "operation": instance
            })
            span.record_exception(error)

            logger.error(
                f"Server error: {error.error_type}",
                extra={
                    "extra_fields": {
                        "error_type": error.error_type,
                        "status_code": error.status_code,
                        "detail": error.message,
                        "instance": instance
                    }
                },
                exc_info=error
            )

            return self.build_error_response(
                error.error_type,
                error.status_code,
                error.message,
                instance
            ), error.status_code

    def handle_unexpected_error(self, error: Exception, instance: str) -> Tuple[Dict[str, Any], int]:
        """Handle anything outside the taxonomy with a generic server fault."""
        with tracer.start_as_current_span("error_handler.unexpected_error") as span:
            span.set_attributes({
                "error.type": "unexpected-error",
                "error.class": error.__class__.__name__,
                "operation": instance
            })
            span.record_exception(error)

            logger.error(
                f"Unexpected error: {error.__class__.__name__}",
                extra={
                    "extra_fields": {
                        "error_type": "unexpected-error",
                        "error_class": error.__class__.__name__,
                        "error_message": str(error),
                        "instance": instance,
                        "traceback": "".join(traceback.format_exception(error))
                    }
                },
                exc_info=error
            )

            return self.build_error_response(
                "internal-server-error",
                500,
                "An unexpected error occurred",
                instance
            ), 500

    async def run(
        self,
        operation: Callable[..., Awaitable[Any]],
        *args,
        instance: str = "",
        success_status: int = 200,
        **kwargs
    ) -> Tuple[Dict[str, Any], int]:
        """
        Await an operation and wrap its outcome in a response envelope.

        Returns:
            ({"success": True, "data": ...}, success_status) on success,
            otherwise the structured error body and its status code.
        """
        try:
            result = await operation(*args, **kwargs)
        except Exception as e:
            return self.handle(e, instance or getattr(operation, "__name__", ""))

        return {"success": True, "data": _to_jsonable(result)}, success_status


def _to_jsonable(value: Any) -> Any:
    """Dump pydantic models (and lists of them) into JSON-ready structures."""
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _to_jsonable(item) for key, item in value.items()}
    return value
