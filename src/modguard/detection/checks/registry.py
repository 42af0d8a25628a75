"""Fixed registry of the checks the engine runs."""

from __future__ import annotations

from typing import Dict, Iterable

from modguard.datatypes.detection_datatypes import CheckName
from modguard.detection.checks.base import Check
from modguard.detection.checks.lexical import InvisibleCharsCheck, SpacingCheck, StopWordsCheck
from modguard.detection.checks.reputation import ReputationCheck
from modguard.detection.checks.statistical import BayesCheck, SimilarityCheck


class CheckRegistry:
    """Immutable mapping of check name to check instance."""

    def __init__(self, checks: Iterable[Check]):
        self._checks: Dict[CheckName, Check] = {}
        for check in checks:
            if check.name is CheckName.MANUAL:
                raise ValueError("the manual label cannot be registered as a check")
            if check.name in self._checks:
                raise ValueError(f"duplicate check registered: {check.name}")
            self._checks[check.name] = check

    def __iter__(self):
        return iter(self._checks.values())

    def __len__(self) -> int:
        return len(self._checks)

    def __contains__(self, name: CheckName) -> bool:
        return name in self._checks

    def get(self, name: CheckName) -> Check | None:
        return self._checks.get(name)

    @property
    def names(self) -> list[CheckName]:
        return list(self._checks)

    async def close(self) -> None:
        for check in self._checks.values():
            await check.close()


def build_default_registry(feed, session=None, similarity_refresh_seconds: float = 300.0) -> CheckRegistry:
    """Create the standard check set wired to a training feed.

    Args:
        feed: Training corpus feed the learning checks pull samples from.
        session: Optional shared ``aiohttp.ClientSession`` for HTTP checks.
        similarity_refresh_seconds: How often the similarity corpus is reloaded.
    """
    return CheckRegistry([
        StopWordsCheck(),
        SpacingCheck(),
        InvisibleCharsCheck(),
        SimilarityCheck(feed, similarity_refresh_seconds),
        BayesCheck(feed),
        ReputationCheck(session),
    ])
