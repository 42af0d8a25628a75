"""
Exception taxonomy for Modguard.

Check failures and notification failures are recovered locally and only ever
show up in logs. Everything else is raised to the caller, which decides how to
present it (command handlers render an :class:`ActionOutcome` instead).
"""

from __future__ import annotations


class ModguardError(Exception):
    """Base class for every error raised by Modguard."""


class DetectionError(ModguardError):
    """Raised when the detection engine cannot produce a decision."""


class EvaluationError(DetectionError):
    """No check could run for the evaluated content.

    Distinct from a ``Clean`` verdict: callers must not treat this as
    "nothing found".
    """


class EvaluationCancelled(DetectionError):
    """The evaluation was cancelled before a decision was reached."""


class CheckFailure(ModguardError):
    """A single check raised or timed out.

    Only used inside the engine, where it is turned into a neutral result.
    """

    def __init__(self, check_name: str, cause: BaseException | None = None, timed_out: bool = False):
        self.check_name = check_name
        self.cause = cause
        self.timed_out = timed_out
        detail = "timed out" if timed_out else f"{type(cause).__name__}: {cause}" if cause else "failed"
        super().__init__(f"check {check_name} {detail}")


class IntentValidationError(ModguardError):
    """An enforcement intent was rejected before any external call was made."""


class EnforcementError(ModguardError):
    """Enforcement failed in every targeted community.

    Attributes:
        cause: The first underlying platform error, if any.
        targeted: Number of communities the action was attempted in.
    """

    def __init__(self, message: str, cause: BaseException | None = None, targeted: int = 0):
        super().__init__(message)
        self.cause = cause
        self.targeted = targeted
