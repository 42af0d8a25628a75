"""
Data structures produced and consumed by the detection engine.

A :class:`CheckResult` is what one check says about one piece of content. A
:class:`Decision` bundles every result of one evaluation with the policy that
was in force; its verdict, net confidence and action are always derived from
those two inputs and are never stored independently.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Tuple

from modguard.datatypes.identifiers import ChannelID, GuildID, MessageID, UserID


class CheckName(Enum):
    """Closed set of detection checks known to the engine."""

    STOP_WORDS = "stop_words"
    SPACING = "spacing"
    INVISIBLE_CHARS = "invisible_chars"
    SIMILARITY = "similarity"
    BAYES = "bayes"
    REPUTATION = "reputation"
    # Label applied by a human reviewer; never registered as a runnable check
    MANUAL = "manual"

    def __str__(self) -> str:
        return self.value


class Verdict(Enum):
    SPAM = "spam"
    CLEAN = "clean"

    def __str__(self) -> str:
        return self.value


class DetectionSource(Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"

    def __str__(self) -> str:
        return self.value


class DetectionAction(Enum):
    """What the policy says should happen with a decision."""

    AUTO_BAN = "auto_ban"
    REVIEW = "review"
    ALLOW = "allow"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class CheckResult:
    """Immutable verdict of a single check.

    Attributes:
        check: Which check produced the result.
        verdict: Spam or Clean.
        confidence: Integer confidence in [0, 100].
        duration: Wall time spent in the check, in seconds.
        abstained: True when the check failed or timed out. Abstained results
            never vote.
        always_run_only: True when the check ran only because of its
            always-run flag. Such results feed the accuracy dimension only.
        details: Short free-form explanation for the audit trail.
    """

    check: CheckName
    verdict: Verdict
    confidence: int
    duration: float = 0.0
    abstained: bool = False
    always_run_only: bool = False
    details: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.confidence, int) or isinstance(self.confidence, bool):
            raise ValueError(f"confidence must be an int, got {type(self.confidence).__name__}")
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence must be within [0, 100], got {self.confidence}")
        if self.duration < 0:
            raise ValueError("duration must not be negative")
        if self.abstained and (self.verdict is not Verdict.CLEAN or self.confidence != 0):
            raise ValueError("an abstained result must be a zero-confidence Clean")

    @classmethod
    def spam(cls, check: CheckName, confidence: int, duration: float = 0.0, details: str = "") -> "CheckResult":
        return cls(check, Verdict.SPAM, confidence, duration, details=details)

    @classmethod
    def clean(cls, check: CheckName, confidence: int = 0, duration: float = 0.0, details: str = "") -> "CheckResult":
        return cls(check, Verdict.CLEAN, confidence, duration, details=details)

    @classmethod
    def neutral(cls, check: CheckName, duration: float = 0.0, details: str = "") -> "CheckResult":
        """Non-voting result recorded when a check fails or times out."""
        return cls(check, Verdict.CLEAN, 0, duration, abstained=True, details=details)

    @property
    def votes_for_enforcement(self) -> bool:
        return not self.abstained and not self.always_run_only

    @property
    def is_spam(self) -> bool:
        return self.verdict is Verdict.SPAM and not self.abstained


@dataclass(frozen=True, slots=True)
class DetectionPolicy:
    """Thresholds and switches that classify a net confidence.

    Attributes:
        auto_ban_threshold: Net confidence at or above which enforcement is automatic.
        review_queue_threshold: Net confidence at or above which a human reviews.
        max_confidence_veto_threshold: Net confidence at or above which a lone
            signal is vetoed from auto-acting.
        training_mode: When true, decisions are recorded but never enforced.
        min_message_length: Messages shorter than this never auto-act alone.
        veto_min_spam_checks: Spam votes needed to pass the veto.
    """

    auto_ban_threshold: int = 80
    review_queue_threshold: int = 50
    max_confidence_veto_threshold: int = 95
    training_mode: bool = False
    min_message_length: int = 10
    veto_min_spam_checks: int = 2

    def __post_init__(self) -> None:
        for name in ("auto_ban_threshold", "review_queue_threshold", "max_confidence_veto_threshold"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be within [0, 100], got {value}")
        if self.review_queue_threshold > self.auto_ban_threshold:
            raise ValueError("review_queue_threshold must not exceed auto_ban_threshold")
        if self.min_message_length < 0 or self.veto_min_spam_checks < 1:
            raise ValueError("min_message_length must be >= 0 and veto_min_spam_checks >= 1")

    def to_dict(self) -> dict:
        return {
            "auto_ban_threshold": self.auto_ban_threshold,
            "review_queue_threshold": self.review_queue_threshold,
            "max_confidence_veto_threshold": self.max_confidence_veto_threshold,
            "training_mode": self.training_mode,
            "min_message_length": self.min_message_length,
            "veto_min_spam_checks": self.veto_min_spam_checks,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DetectionPolicy":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if "training_mode" in known:
            known["training_mode"] = bool(known["training_mode"])
        return cls(**known)


@dataclass(frozen=True, slots=True)
class ContentContext:
    """Everything a check may look at for one piece of content."""

    user_id: UserID
    text: str
    guild_id: GuildID | None = None
    channel_id: ChannelID | None = None
    message_id: MessageID | None = None
    edit_version: int = 0
    urls: Tuple[str, ...] = ()
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def edited(self, text: str, urls: Tuple[str, ...] = ()) -> "ContentContext":
        """Return the context for the next edit of the same message."""
        return ContentContext(
            user_id=self.user_id,
            text=text,
            guild_id=self.guild_id,
            channel_id=self.channel_id,
            message_id=self.message_id,
            edit_version=self.edit_version + 1,
            urls=urls,
        )


@dataclass(frozen=True, slots=True)
class Classification:
    action: DetectionAction
    vetoed: bool = False
    reason: str = ""


@dataclass(frozen=True, slots=True)
class Decision:
    """Aggregated outcome of one evaluation.

    Derived values (``net_confidence``, ``accuracy_confidence``, ``verdict``,
    ``classification``) are computed from ``results`` and ``policy`` on access,
    so they cannot drift from the inputs. ``training_eligible`` is the only
    field that changes after creation, and only through
    :meth:`with_training_eligibility` or the decision repository.
    """

    user_id: UserID
    results: Tuple[CheckResult, ...]
    policy: DetectionPolicy
    source: DetectionSource = DetectionSource.AUTOMATIC
    message_id: MessageID | None = None
    guild_id: GuildID | None = None
    channel_id: ChannelID | None = None
    edit_version: int = 0
    text: str = ""
    evaluated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    training_eligible: bool = False
    decision_id: int | None = None

    @property
    def net_confidence(self) -> int:
        from modguard.detection.aggregation import net_confidence
        return net_confidence(self.results)

    @property
    def accuracy_confidence(self) -> int:
        from modguard.detection.aggregation import accuracy_confidence
        return accuracy_confidence(self.results)

    @property
    def verdict(self) -> Verdict:
        from modguard.detection.aggregation import verdict_for
        return verdict_for(self.net_confidence, self.policy)

    @property
    def classification(self) -> Classification:
        from modguard.detection.aggregation import classify
        return classify(self.results, self.policy, len(self.text))

    @property
    def action(self) -> DetectionAction:
        return self.classification.action

    @property
    def should_enforce(self) -> bool:
        """True when policy calls for automatic enforcement and training mode is off."""
        return self.action is DetectionAction.AUTO_BAN and not self.policy.training_mode

    def with_training_eligibility(self, eligible: bool) -> "Decision":
        return replace(self, training_eligible=eligible)

    def with_id(self, decision_id: int) -> "Decision":
        return replace(self, decision_id=decision_id)
