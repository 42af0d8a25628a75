"""
Detection decision engine.

Runs every check that the scope enables (or marks always-run) concurrently,
turns individual failures into neutral results, and wraps the outcome in a
:class:`Decision`. The engine never persists anything itself; the moderation
pipeline records what it returns.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from datetime import datetime, timezone

from modguard.datatypes.check_config import CheckConfig, ScopeConfig
from modguard.datatypes.detection_datatypes import (
    CheckResult,
    ContentContext,
    Decision,
    DetectionSource,
    Verdict,
)
from modguard.detection.checks.base import Check
from modguard.detection.checks.registry import CheckRegistry
from modguard.detection.scope_resolver import resolve, resolve_policy
from modguard.detection.training_feed import is_training_eligible
from modguard.errors import CheckFailure, EvaluationCancelled, EvaluationError
from modguard.util.logger import get_logger

logger = get_logger("detection_engine")


class DetectionEngine:
    """Evaluates content against the registered checks.

    Args:
        registry: Checks available to the engine.
        concurrency_limit: Maximum checks in flight for one evaluation.
        deadline: Overall wall-clock budget for one evaluation, in seconds.
    """

    def __init__(self, registry: CheckRegistry, concurrency_limit: int = 8, deadline: float = 10.0):
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self.registry = registry
        self.concurrency_limit = concurrency_limit
        self.deadline = deadline

    def plan(self, scope: ScopeConfig) -> list[tuple[Check, CheckConfig]]:
        """Return the checks that will run for ``scope`` with their effective config."""
        planned = []
        for check in self.registry:
            effective = resolve(check.name, scope).config
            if effective.should_run:
                planned.append((check, effective))
        return planned

    async def _run_check(
        self,
        check: Check,
        config: CheckConfig,
        context: ContentContext,
        semaphore: asyncio.Semaphore,
    ) -> CheckResult:
        started = time.perf_counter()
        try:
            async with semaphore:
                result = await asyncio.wait_for(check.evaluate(context, config), timeout=config.timeout)
            if not isinstance(result, CheckResult):
                raise TypeError(f"expected CheckResult, got {type(result).__name__}")
        except asyncio.TimeoutError:
            failure = CheckFailure(str(check.name), timed_out=True)
            logger.warning("[DETECTION] %s", failure)
            return CheckResult.neutral(check.name, time.perf_counter() - started, details="timed out")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            failure = CheckFailure(str(check.name), cause=exc)
            logger.warning("[DETECTION] %s", failure)
            return CheckResult.neutral(check.name, time.perf_counter() - started, details=f"error: {type(exc).__name__}")

        result = replace(
            result,
            check=check.name,
            duration=time.perf_counter() - started,
            always_run_only=not config.enabled,
        )
        if result.verdict is Verdict.SPAM and result.confidence < config.confidence_threshold:
            result = replace(
                result,
                verdict=Verdict.CLEAN,
                details=f"below threshold {config.confidence_threshold}: {result.details}".rstrip(": "),
            )
        return result

    async def evaluate(
        self,
        context: ContentContext,
        scope: ScopeConfig,
        cancel_event: asyncio.Event | None = None,
    ) -> Decision:
        """Evaluate ``context`` and return the resulting decision.

        Args:
            context: Content being evaluated.
            scope: Two-level configuration of the community the content came from.
            cancel_event: Optional signal; when set, in-flight checks are abandoned.

        Returns:
            Decision: Aggregated decision including every check result.

        Raises:
            EvaluationError: No checks are enabled, or every check failed.
            EvaluationCancelled: ``cancel_event`` was set before completion.
        """
        planned = self.plan(scope)
        if not planned:
            raise EvaluationError(f"no checks enabled for guild {scope.guild_id}")

        policy = resolve_policy(scope)
        semaphore = asyncio.Semaphore(self.concurrency_limit)
        tasks = {
            asyncio.create_task(self._run_check(check, config, context, semaphore)): check
            for check, config in planned
        }
        cancel_waiter = asyncio.create_task(cancel_event.wait()) if cancel_event is not None else None

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.deadline
        pending = set(tasks)
        try:
            while pending:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                waiting = pending | ({cancel_waiter} if cancel_waiter else set())
                done, _ = await asyncio.wait(waiting, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
                if cancel_waiter is not None and cancel_waiter in done:
                    logger.info("[DETECTION] Evaluation of message %s cancelled", context.message_id)
                    raise EvaluationCancelled(f"evaluation of message {context.message_id} cancelled")
                pending -= done
        finally:
            leftovers = list(pending)
            if cancel_waiter is not None:
                leftovers.append(cancel_waiter)
            for task in leftovers:
                task.cancel()
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)

        results = []
        for task, check in tasks.items():
            if task in pending:
                logger.warning("[DETECTION] check %s missed the evaluation deadline", check.name)
                results.append(CheckResult.neutral(check.name, self.deadline, details="deadline exceeded"))
            else:
                results.append(task.result())

        if all(r.abstained for r in results):
            raise EvaluationError(f"all {len(results)} checks failed for message {context.message_id}")

        decision = Decision(
            user_id=context.user_id,
            results=tuple(results),
            policy=policy,
            source=DetectionSource.AUTOMATIC,
            message_id=context.message_id,
            guild_id=context.guild_id,
            channel_id=context.channel_id,
            edit_version=context.edit_version,
            text=context.text,
            evaluated_at=datetime.now(timezone.utc),
        )
        decision = decision.with_training_eligibility(is_training_eligible(decision))

        logger.debug(
            "[DETECTION] message=%s v%d net=%d accuracy=%d verdict=%s action=%s",
            context.message_id, context.edit_version, decision.net_confidence,
            decision.accuracy_confidence, decision.verdict, decision.action,
        )
        return decision
