"""
Resolution of effective per-check configuration for one community.

The rule is strict: an override that exists and does not set ``use_global`` is
returned verbatim; otherwise the global record is returned verbatim. Fields are
never blended across the two levels. With neither record present the check is
disabled.
"""

from __future__ import annotations

from modguard.datatypes.check_config import CheckConfig, EffectiveConfig, ScopeConfig
from modguard.datatypes.detection_datatypes import CheckName, DetectionPolicy


def resolve(check: CheckName, scope: ScopeConfig) -> EffectiveConfig:
    """Return the effective configuration of ``check`` within ``scope``.

    Args:
        check: Check being resolved.
        scope: Two-level configuration for the community being evaluated.

    Returns:
        EffectiveConfig: The chosen record and which level it came from.
    """
    override = scope.overrides.get(check)
    if override is not None and not override.use_global:
        return EffectiveConfig(config=override, source="community")

    global_record = scope.global_checks.get(check)
    if global_record is not None:
        return EffectiveConfig(config=global_record, source="global")

    return EffectiveConfig(config=CheckConfig.disabled(check), source="default")


def resolve_all(checks, scope: ScopeConfig) -> dict[CheckName, EffectiveConfig]:
    return {check: resolve(check, scope) for check in checks}


def resolve_policy(scope: ScopeConfig) -> DetectionPolicy:
    """Policy counterpart of :func:`resolve`: override verbatim or global verbatim."""
    if scope.policy_override is not None and not scope.policy_use_global:
        return scope.policy_override
    return scope.global_policy
