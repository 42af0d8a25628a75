"""
Per-check configuration and the two-level scope structure.

Each check carries its own typed parameter shape. A :class:`ScopeConfig` holds
the global records plus the overrides of exactly one community and is passed
explicitly into every evaluation.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Dict, Mapping, Tuple, Type

from modguard.datatypes.detection_datatypes import CheckName, DetectionPolicy
from modguard.datatypes.identifiers import GuildID


# -------------------- Check-specific parameters --------------------

@dataclass(frozen=True, slots=True)
class StopWordsParams:
    # Confidence contributed per distinct stop word hit, capped at 100
    confidence_per_hit: int = 50
    words: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SpacingParams:
    short_word_length: int = 2
    suspicious_ratio: float = 0.7
    space_ratio: float = 0.4
    min_words: int = 5
    min_length: int = 20


@dataclass(frozen=True, slots=True)
class InvisibleCharsParams:
    min_count: int = 1


@dataclass(frozen=True, slots=True)
class SimilarityParams:
    similarity_threshold: float = 0.5
    max_samples: int = 200


@dataclass(frozen=True, slots=True)
class BayesParams:
    min_spam_probability: float = 0.5
    min_samples: int = 10
    refresh_seconds: int = 600


@dataclass(frozen=True, slots=True)
class ReputationParams:
    endpoint: str = "https://api.cas.chat/check"
    daily_limit: int = 1000
    per_minute_limit: int = 30


PARAMS_BY_CHECK: Dict[CheckName, Type] = {
    CheckName.STOP_WORDS: StopWordsParams,
    CheckName.SPACING: SpacingParams,
    CheckName.INVISIBLE_CHARS: InvisibleCharsParams,
    CheckName.SIMILARITY: SimilarityParams,
    CheckName.BAYES: BayesParams,
    CheckName.REPUTATION: ReputationParams,
}


def params_from_dict(check: CheckName, data: Mapping | None):
    """Build the typed parameter object for ``check``, ignoring unknown keys."""
    params_cls = PARAMS_BY_CHECK.get(check)
    if params_cls is None:
        return None
    data = dict(data or {})
    allowed = {f.name for f in fields(params_cls)}
    kwargs = {k: v for k, v in data.items() if k in allowed}
    for f in fields(params_cls):
        # YAML and JSON hand back lists where the dataclass expects tuples
        if f.name in kwargs and isinstance(kwargs[f.name], list):
            kwargs[f.name] = tuple(kwargs[f.name])
    return params_cls(**kwargs)


def params_to_dict(params) -> dict:
    if params is None:
        return {}
    out = {}
    for f in fields(params):
        value = getattr(params, f.name)
        out[f.name] = list(value) if isinstance(value, tuple) else value
    return out


# -------------------- Per-check configuration --------------------

@dataclass(frozen=True, slots=True)
class CheckConfig:
    """Configuration of one check at one scope.

    Attributes:
        check: Check the record applies to.
        enabled: Whether the check takes part in enforcement.
        use_global: Override only; when true every other field is ignored.
        confidence_threshold: Minimum confidence for a Spam result to vote.
        always_run: Run even when disabled, feeding the accuracy view only.
        timeout: Per-call timeout in seconds.
        params: Check-specific parameter object.
    """

    check: CheckName
    enabled: bool = True
    use_global: bool = False
    confidence_threshold: int = 0
    always_run: bool = False
    timeout: float = 5.0
    params: object = None

    def __post_init__(self) -> None:
        if not 0 <= self.confidence_threshold <= 100:
            raise ValueError("confidence_threshold must be within [0, 100]")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.params is None:
            object.__setattr__(self, "params", params_from_dict(self.check, None))

    @classmethod
    def disabled(cls, check: CheckName) -> "CheckConfig":
        return cls(check=check, enabled=False)

    @property
    def should_run(self) -> bool:
        return self.enabled or self.always_run


@dataclass(frozen=True, slots=True)
class EffectiveConfig:
    """Resolved configuration for one check in one community."""

    config: CheckConfig
    source: str  # "global", "community" or "default"

    @property
    def check(self) -> CheckName:
        return self.config.check


@dataclass(frozen=True, slots=True)
class ScopeConfig:
    """Global records plus one community's overrides.

    Attributes:
        guild_id: Community the overrides belong to, None for global-only.
        global_checks: Global record per check.
        overrides: Community override per check.
        global_policy: Global detection policy.
        policy_override: Community policy, or None to use the global one.
        policy_use_global: When true the community policy is ignored.
    """

    guild_id: GuildID | None = None
    global_checks: Mapping[CheckName, CheckConfig] = field(default_factory=dict)
    overrides: Mapping[CheckName, CheckConfig] = field(default_factory=dict)
    global_policy: DetectionPolicy = field(default_factory=DetectionPolicy)
    policy_override: DetectionPolicy | None = None
    policy_use_global: bool = True
