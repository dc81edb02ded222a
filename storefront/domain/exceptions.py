"""Domain exceptions.

All domain-level errors raised by the checkout workflow. The API layer
maps each class to an HTTP status and a stable error code.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions.

    All domain errors should inherit from this class to allow
    catching domain-specific errors at the application layer.
    """

    error_code = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# Request Errors
# ============================================================================


class ValidationError(DomainError):
    """Raised when a checkout payload is missing or malformed.

    The session is left untouched when this error is raised.
    """

    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        missing_fields: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize validation error.

        Args:
            message: Human-readable error message.
            missing_fields: Names of required fields that were absent.
            details: Optional additional context.
        """
        merged = dict(details or {})
        if missing_fields:
            merged["missing_fields"] = missing_fields
        super().__init__(message, details=merged)
        self.missing_fields = missing_fields or []


class PreconditionError(DomainError):
    """Raised when a checkout step is attempted out of order.

    Carries the step the client should resume from.
    """

    error_code = "PRECONDITION_FAILED"

    def __init__(
        self,
        message: str,
        resume_step: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize precondition error.

        Args:
            message: Human-readable error message.
            resume_step: Step the client should go back to, if known.
            details: Optional additional context.
        """
        merged = dict(details or {})
        if resume_step:
            merged["resume_step"] = resume_step
        super().__init__(message, details=merged)
        self.resume_step = resume_step


class InvalidStepTransitionError(PreconditionError):
    """Raised when a checkout step transition is not allowed.

    This error indicates that the requested step cannot be entered
    from the current step of the checkout.
    """

    def __init__(
        self,
        checkout_id: str | None,
        current_step: str | None,
        target_step: str,
        allowed_steps: list[str] | None = None,
        resume_step: str | None = None,
    ) -> None:
        """Initialize invalid step transition error.

        Args:
            checkout_id: ID of the checkout, if one exists.
            current_step: Current step of the checkout.
            target_step: Attempted target step.
            allowed_steps: Steps reachable from the current step.
            resume_step: Step the client should resume from.
        """
        allowed = allowed_steps or []
        message = (
            f"Cannot move checkout({checkout_id}) "
            f"from '{current_step}' to '{target_step}'. "
            f"Allowed steps: {allowed}"
        )
        super().__init__(
            message,
            resume_step=resume_step,
            details={
                "checkout_id": checkout_id,
                "current_step": current_step,
                "target_step": target_step,
                "allowed_steps": allowed,
            },
        )


class ConcurrentModificationError(PreconditionError):
    """Raised when a session changed between read and write."""

    def __init__(self, session_id: str, expected_version: int) -> None:
        super().__init__(
            "Checkout was modified concurrently; reload and retry",
            details={
                "session_id": session_id,
                "expected_version": expected_version,
            },
        )


# ============================================================================
# Integration Errors
# ============================================================================


class GatewayError(DomainError):
    """Raised when the payment gateway rejects or fails a call."""

    error_code = "PAYMENT_GATEWAY_ERROR"

    def __init__(
        self,
        message: str,
        gateway_code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        """Initialize gateway error.

        Args:
            message: Message safe to show to the client.
            gateway_code: Gateway-specific error code, if any.
            status_code: HTTP status returned by the gateway, if any.
        """
        super().__init__(
            message,
            details={"gateway_code": gateway_code, "status_code": status_code},
        )
        self.gateway_code = gateway_code
        self.status_code = status_code


class SinkWriteError(DomainError):
    """Raised when an order record could not be written to a sink."""

    error_code = "SINK_WRITE_ERROR"

    def __init__(self, sink: str, message: str, order_id: str | None = None) -> None:
        """Initialize sink write error.

        Args:
            sink: Name of the sink that failed.
            message: Underlying failure description.
            order_id: Order being written, if known.
        """
        super().__init__(
            f"{sink} write failed: {message}",
            details={"sink": sink, "order_id": order_id},
        )
        self.sink = sink
        self.order_id = order_id


class SignatureError(DomainError):
    """Raised when a webhook signature is missing or does not verify."""

    error_code = "INVALID_SIGNATURE"
