"""State machine for the checkout flow.

Defines the checkout steps and which step may follow which. The
checkout service consults this table before every session write.
"""

from enum import Enum

from storefront.domain.exceptions import InvalidStepTransitionError


# ============================================================================
# Checkout Step State Machine
# ============================================================================


class CheckoutStep(str, Enum):
    """Checkout lifecycle steps.

    State diagram:
        STARTED ──────────────────────────────────────────► ABANDONED
          │                                                   ▲
          │ personal info                                     │
          ▼                                                   │
        PERSONAL_INFO ◄──────────────┐  (edit) ───────────────┤
          │                          │                        │
          │ shipping info            │                        │
          ▼                          │                        │
        SHIPPING_INFO ◄──────────────┤ ───────────────────────┤
          │                          │                        │
          │ payment method           │                        │
          ▼                          │                        │
        PAYMENT_SELECTION ───────────┘ ───────────────────────┤
          │            │                                      │
          │ confirm    │ card payment recorded                │
          ▼            │                                      │
        PAYMENT_PROCESSING ───────────────────────────────────┘
          │            │
          ▼            ▼
        COMPLETED ◄────┘
    """

    STARTED = "started"
    PERSONAL_INFO = "personal_info"
    SHIPPING_INFO = "shipping_info"
    PAYMENT_SELECTION = "payment_selection"
    PAYMENT_PROCESSING = "payment_processing"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    def can_transition_to(self, target: "CheckoutStep") -> bool:
        """Check if transition to target step is valid.

        Args:
            target: Target step to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _CHECKOUT_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["CheckoutStep"]:
        """Get list of valid target steps.

        Returns:
            List of steps that can be transitioned to.
        """
        return list(_CHECKOUT_TRANSITIONS.get(self, set()))

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) step.

        Returns:
            True if no further transitions are possible.
        """
        return len(_CHECKOUT_TRANSITIONS.get(self, set())) == 0

    def is_active(self) -> bool:
        """Check if checkout is still in progress."""
        return not self.is_terminal()

    @property
    def ordinal(self) -> int:
        """Position of the step along the happy path."""
        return _STEP_ORDER.index(self)


_STEP_ORDER: list[CheckoutStep] = [
    CheckoutStep.STARTED,
    CheckoutStep.PERSONAL_INFO,
    CheckoutStep.SHIPPING_INFO,
    CheckoutStep.PAYMENT_SELECTION,
    CheckoutStep.PAYMENT_PROCESSING,
    CheckoutStep.COMPLETED,
    CheckoutStep.ABANDONED,
]

# Step transitions (defined outside enum to avoid Enum restrictions)
_CHECKOUT_TRANSITIONS: dict[CheckoutStep, set[CheckoutStep]] = {
    CheckoutStep.STARTED: {CheckoutStep.PERSONAL_INFO, CheckoutStep.ABANDONED},
    CheckoutStep.PERSONAL_INFO: {
        CheckoutStep.PERSONAL_INFO,
        CheckoutStep.SHIPPING_INFO,
        CheckoutStep.ABANDONED,
    },
    CheckoutStep.SHIPPING_INFO: {
        CheckoutStep.PERSONAL_INFO,
        CheckoutStep.SHIPPING_INFO,
        CheckoutStep.PAYMENT_SELECTION,
        CheckoutStep.ABANDONED,
    },
    CheckoutStep.PAYMENT_SELECTION: {
        CheckoutStep.PERSONAL_INFO,
        CheckoutStep.SHIPPING_INFO,
        CheckoutStep.PAYMENT_SELECTION,
        CheckoutStep.PAYMENT_PROCESSING,
        CheckoutStep.COMPLETED,
        CheckoutStep.ABANDONED,
    },
    CheckoutStep.PAYMENT_PROCESSING: {
        CheckoutStep.PAYMENT_SELECTION,
        CheckoutStep.COMPLETED,
        CheckoutStep.ABANDONED,
    },
    CheckoutStep.COMPLETED: set(),  # Terminal state
    CheckoutStep.ABANDONED: set(),  # Terminal state
}

# Step a client should resume from when it tries to jump ahead
_RESUME_STEP: dict[CheckoutStep, CheckoutStep] = {
    CheckoutStep.SHIPPING_INFO: CheckoutStep.PERSONAL_INFO,
    CheckoutStep.PAYMENT_SELECTION: CheckoutStep.SHIPPING_INFO,
    CheckoutStep.PAYMENT_PROCESSING: CheckoutStep.PAYMENT_SELECTION,
    CheckoutStep.COMPLETED: CheckoutStep.PAYMENT_SELECTION,
}


def validate_checkout_transition(
    current: CheckoutStep | None,
    target: CheckoutStep,
    checkout_id: str | None = None,
) -> None:
    """Validate a checkout step transition.

    A missing current step means no checkout exists yet; only STARTED
    may follow it.

    Args:
        current: Current step, or None before initialization.
        target: Target step.
        checkout_id: Checkout ID for error messages.

    Raises:
        InvalidStepTransitionError: If transition is not allowed.
    """
    if current is None:
        if target == CheckoutStep.STARTED:
            return
        raise InvalidStepTransitionError(
            checkout_id=checkout_id,
            current_step=None,
            target_step=target.value,
            allowed_steps=[CheckoutStep.STARTED.value],
            resume_step=CheckoutStep.PERSONAL_INFO.value,
        )

    if not current.can_transition_to(target):
        resume = _RESUME_STEP.get(target)
        if current.is_terminal():
            resume = None
        elif resume is not None and resume.ordinal > current.ordinal:
            resume = _STEP_ORDER[current.ordinal + 1]
        raise InvalidStepTransitionError(
            checkout_id=checkout_id,
            current_step=current.value,
            target_step=target.value,
            allowed_steps=sorted(s.value for s in current.allowed_transitions()),
            resume_step=resume.value if resume else None,
        )
