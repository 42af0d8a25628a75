"""
Capability shared by every detection check.

The engine only ever talks to :class:`Check`. A check receives the content and
its own effective configuration and returns one :class:`CheckResult`; it may
raise, in which case the engine records a neutral result instead.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from modguard.datatypes.check_config import CheckConfig
from modguard.datatypes.detection_datatypes import CheckName, CheckResult, ContentContext


class Check(ABC):
    """Base class for detection checks.

    Subclasses set ``name`` and implement :meth:`evaluate`. The engine measures
    duration and applies timeouts, so implementations do not need to.
    """

    name: CheckName

    @abstractmethod
    async def evaluate(self, context: ContentContext, config: CheckConfig) -> CheckResult:
        """Score ``context`` and return a Spam or Clean result."""

    async def close(self) -> None:
        """Release any resources held by the check."""
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
