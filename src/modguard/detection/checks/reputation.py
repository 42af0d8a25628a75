"""
External account reputation lookup.

Queries a ban-list style HTTP service for the author of the content. The
service enforces daily and per-minute caps, so every failure mode (quota
exhausted, timeout, bad status, malformed body) fails open to a Clean result.
"""

from __future__ import annotations

import asyncio

import aiohttp

from modguard.datatypes.check_config import CheckConfig
from modguard.datatypes.detection_datatypes import CheckName, CheckResult, ContentContext
from modguard.detection.checks.base import Check
from modguard.util.logger import get_logger
from modguard.util.quota import CallQuota

logger = get_logger("reputation_check")


class ReputationCheck(Check):
    """Flags accounts listed by an external reputation service."""

    name = CheckName.REPUTATION

    def __init__(self, session: aiohttp.ClientSession | None = None):
        self._session = session
        self._owns_session = session is None
        self._quota: CallQuota | None = None
        self._quota_limits: tuple[int, int] | None = None

    def _quota_for(self, config: CheckConfig) -> CallQuota:
        limits = (config.params.per_minute_limit, config.params.daily_limit)
        if self._quota is None or self._quota_limits != limits:
            self._quota = CallQuota(per_minute=limits[0], per_day=limits[1])
            self._quota_limits = limits
        return self._quota

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def evaluate(self, context: ContentContext, config: CheckConfig) -> CheckResult:
        quota = self._quota_for(config)
        allowed, reason = await quota.try_acquire()
        if not allowed:
            usage = await quota.usage()
            logger.warning(
                "[REPUTATION] Quota exhausted (%d/%d this minute, %d/%d today), failing open: %s",
                usage["minute_used"], usage["minute_limit"], usage["day_used"], usage["day_limit"], reason,
            )
            return CheckResult.clean(self.name, details=f"fail open: {reason}")

        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=config.timeout)
        try:
            async with session.get(
                config.params.endpoint,
                params={"user_id": str(context.user_id)},
                timeout=timeout,
            ) as response:
                if response.status != 200:
                    logger.warning("[REPUTATION] Service returned HTTP %s, failing open", response.status)
                    return CheckResult.clean(self.name, details=f"fail open: HTTP {response.status}")
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("[REPUTATION] Lookup failed, failing open: %s", exc)
            return CheckResult.clean(self.name, details=f"fail open: {type(exc).__name__}")

        if not isinstance(payload, dict):
            return CheckResult.clean(self.name, details="fail open: malformed response")
        if payload.get("ok") and payload.get("result"):
            offenses = payload["result"].get("offenses", 1) if isinstance(payload["result"], dict) else 1
            return CheckResult.spam(self.name, 100, details=f"listed ({offenses} offenses)")
        return CheckResult.clean(self.name, details="not listed")

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
