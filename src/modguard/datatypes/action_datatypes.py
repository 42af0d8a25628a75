"""
Action types and data structures for enforcement.

An :class:`EnforcementIntent` is what a caller asks for, an :class:`ActionRecord`
is what gets persisted, and an :class:`ActionOutcome` is what the orchestrator
reports back. Record state moves through the explicit transition functions at
the bottom of this module and nowhere else.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum

from modguard.datatypes.identifiers import ChannelID, GuildID, MessageID, UserID
from modguard.errors import IntentValidationError


class ActionType(Enum):
    """Enumeration of supported enforcement actions."""

    BAN = "ban"
    MUTE = "mute"
    TEMPBAN = "tempban"
    TRUST = "trust"
    UNTRUST = "untrust"
    UNBAN = "unban"

    def __str__(self) -> str:
        return self.value

    @property
    def is_timed(self) -> bool:
        return self in (ActionType.MUTE, ActionType.TEMPBAN)

    @property
    def exempts_admins(self) -> bool:
        """Admins are protected from restricting kinds only."""
        return self in (ActionType.BAN, ActionType.MUTE, ActionType.TEMPBAN)

    @property
    def notifies_account(self) -> bool:
        return self in (ActionType.BAN, ActionType.MUTE, ActionType.TEMPBAN)

    @property
    def family(self) -> str:
        """Record family used by the one-active-record constraint."""
        if self in (ActionType.BAN, ActionType.TEMPBAN):
            return "ban"
        if self is ActionType.TRUST:
            return "trust"
        if self is ActionType.MUTE:
            return "mute"
        return "none"

    @property
    def persists_record(self) -> bool:
        return self in (ActionType.BAN, ActionType.TEMPBAN, ActionType.MUTE, ActionType.TRUST)


class ActionState(Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVERSED = "reversed"

    def __str__(self) -> str:
        return self.value


class NotificationChannel(Enum):
    PRIVATE_MESSAGE = "private_message"
    COMMUNITY_MENTION = "community_mention"
    NONE = "none"

    def __str__(self) -> str:
        return self.value


class FailureKind(Enum):
    VALIDATION = "validation"
    ENFORCEMENT = "enforcement"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value


SYSTEM_EXECUTOR = "system:auto-detection"


@dataclass(frozen=True, slots=True)
class EnforcementIntent:
    """Request to apply one action to one account.

    Attributes:
        user_id: Target account.
        executor: Who authorized the action (``SYSTEM_EXECUTOR`` or ``"user:<id>"``).
        action: Kind of action.
        reason: Free text shown to the account and recorded in the audit trail.
        duration: Required for timed kinds, forbidden otherwise.
        guild_id: Community the request originated in, used for notification fallback.
        channel_id: Channel of the originating message, if any.
        message_id: Originating message, if any.
        restore_trust: Unban only; grant trust after lifting the ban.
    """

    user_id: UserID
    executor: str
    action: ActionType
    reason: str
    duration: timedelta | None = None
    guild_id: GuildID | None = None
    channel_id: ChannelID | None = None
    message_id: MessageID | None = None
    restore_trust: bool = False

    def validate(self) -> None:
        """Raise :class:`IntentValidationError` when the intent is malformed."""
        if self.action.is_timed:
            if self.duration is None:
                raise IntentValidationError(f"{self.action} requires a duration")
            if self.duration <= timedelta(0):
                raise IntentValidationError(f"{self.action} requires a positive duration")
        elif self.duration is not None:
            raise IntentValidationError(f"{self.action} does not accept a duration")
        if self.restore_trust and self.action is not ActionType.UNBAN:
            raise IntentValidationError("restore_trust only applies to unban")
        if not self.executor:
            raise IntentValidationError("an executor is required")

    @property
    def is_automatic(self) -> bool:
        return self.executor == SYSTEM_EXECUTOR


@dataclass(frozen=True, slots=True)
class ActionRecord:
    """Durable record of one issued action.

    Attributes:
        record_id: Database row id, None until persisted.
        user_id: Target account.
        action: Kind of action issued.
        issuer: Executor string copied from the intent.
        issued_at: UTC time of issuance.
        expires_at: UTC expiry, None for permanent actions.
        reason: Reason text.
        state: Current lifecycle state.
        reversed_at: When the record left the active state.
        reversed_by: Who or what reversed it.
    """

    user_id: UserID
    action: ActionType
    issuer: str
    issued_at: datetime
    reason: str
    expires_at: datetime | None = None
    state: ActionState = ActionState.ACTIVE
    reversed_at: datetime | None = None
    reversed_by: str | None = None
    record_id: int | None = None

    @classmethod
    def from_intent(cls, intent: EnforcementIntent, issued_at: datetime | None = None) -> "ActionRecord":
        issued_at = issued_at or datetime.now(timezone.utc)
        expires_at = issued_at + intent.duration if intent.duration is not None else None
        return cls(
            user_id=intent.user_id,
            action=intent.action,
            issuer=intent.executor,
            issued_at=issued_at,
            reason=intent.reason,
            expires_at=expires_at,
        )

    @property
    def is_active(self) -> bool:
        return self.state is ActionState.ACTIVE

    def is_due(self, now: datetime) -> bool:
        return self.is_active and self.expires_at is not None and self.expires_at <= now


# -------------------- State transitions --------------------

class InvalidTransition(ValueError):
    """Raised when a record is moved out of a state that does not allow it."""


def expire(record: ActionRecord, now: datetime) -> ActionRecord:
    """Active -> Expired. Only valid once the expiry instant has passed."""
    if record.state is not ActionState.ACTIVE:
        raise InvalidTransition(f"cannot expire a {record.state} record")
    if record.expires_at is None or record.expires_at > now:
        raise InvalidTransition("record has not reached its expiry")
    return replace(record, state=ActionState.EXPIRED)


def reverse(record: ActionRecord, now: datetime, by: str) -> ActionRecord:
    """Active -> Reversed (manual) or Expired -> Reversed (reconciler)."""
    if record.state is ActionState.REVERSED:
        raise InvalidTransition("record is already reversed")
    return replace(record, state=ActionState.REVERSED, reversed_at=now, reversed_by=by)


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    channel: NotificationChannel
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.channel is not NotificationChannel.NONE


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    """Result of one orchestration call.

    Attributes:
        success: Overall success. Partial enforcement still counts as success.
        action: Kind of action that was requested.
        chats_affected: Communities where the platform call succeeded.
        chats_targeted: Communities the action was attempted in.
        error: First error seen, or the validation/cancellation message.
        failure: Category of failure when ``success`` is False.
        trust_revoked: A trust grant was revoked as a side effect.
        notification: Channel used to notify the account.
        expires_at: Expiry of the created record for timed kinds.
        no_op: The account was already in the requested state.
        record_id: Id of the persisted action record, if any.
    """

    success: bool
    action: ActionType
    chats_affected: int = 0
    chats_targeted: int = 0
    error: str | None = None
    failure: FailureKind | None = None
    trust_revoked: bool = False
    notification: NotificationChannel = NotificationChannel.NONE
    expires_at: datetime | None = None
    no_op: bool = False
    record_id: int | None = None

    @property
    def cancelled(self) -> bool:
        return self.failure is FailureKind.CANCELLED

    @property
    def partial(self) -> bool:
        return self.success and self.error is not None

    @classmethod
    def rejected(cls, action: ActionType, message: str) -> "ActionOutcome":
        return cls(success=False, action=action, error=message, failure=FailureKind.VALIDATION)

    @classmethod
    def aborted(cls, action: ActionType, chats_affected: int = 0) -> "ActionOutcome":
        return cls(
            success=False,
            action=action,
            chats_affected=chats_affected,
            error="operation cancelled",
            failure=FailureKind.CANCELLED,
        )
