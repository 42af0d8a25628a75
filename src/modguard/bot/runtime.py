"""
Runtime wiring for the bot process.

:class:`ModguardRuntime` builds every service from :data:`app_config` and owns
their lifecycle: the database, the check registry with its HTTP session, the
detection engine, the training feed, the orchestrator, the pipeline and the two
periodic tasks (expiry reconciliation and retention maintenance).
"""

from __future__ import annotations

from typing import Optional

import aiohttp
import discord

from modguard.configuration.app_configuration import AppConfig, app_config
from modguard.database.database import Database
from modguard.detection.checks.registry import CheckRegistry, build_default_registry
from modguard.detection.detection_engine import DetectionEngine
from modguard.detection.training_feed import TrainingCorpusFeed
from modguard.moderation.admin_reports import AdminReporter
from modguard.moderation.notification import NotificationDelivery
from modguard.moderation.orchestrator import ModerationOrchestrator
from modguard.moderation.pipeline import ModerationPipeline
from modguard.moderation.platform import DiscordPlatform, EnforcementPlatform
from modguard.repositories.check_config_repo import CheckConfigRepo
from modguard.scheduler.expiry_reconciler import ExpiryReconciler
from modguard.scheduler.periodic_task import PeriodicTask
from modguard.util.logger import get_logger

logger = get_logger("runtime")


class ModguardRuntime:
    """Container for the long-lived services of one bot process."""

    def __init__(
        self,
        bot: discord.Bot,
        config: AppConfig = app_config,
        database: Database | None = None,
        platform: EnforcementPlatform | None = None,
    ):
        self.bot = bot
        self.config = config
        self.database = database or Database(config.database_path)
        self.platform = platform or DiscordPlatform(bot)
        connections = self.database.connections

        self.feed = TrainingCorpusFeed(connections, max_automatic=config.training_max_automatic)
        self.http_session: Optional[aiohttp.ClientSession] = None
        self.registry: Optional[CheckRegistry] = None
        self.engine: Optional[DetectionEngine] = None

        call_timeout = config.enforcement_call_timeout
        self.notifier = NotificationDelivery(self.platform, connections, call_timeout=call_timeout)
        self.orchestrator = ModerationOrchestrator(
            self.platform,
            connections,
            self.notifier,
            concurrency=config.enforcement_concurrency,
            call_timeout=call_timeout,
            deadline=config.enforcement_deadline,
        )
        self.reporter = AdminReporter(self.platform, config.admin_channel_ids, call_timeout=call_timeout)
        self.pipeline: Optional[ModerationPipeline] = None
        self.reconciler = ExpiryReconciler(
            connections,
            self.platform,
            self.notifier,
            claim_timeout=config.reconciler_claim_timeout,
            call_timeout=call_timeout,
            concurrency=config.enforcement_concurrency,
            locks=self.orchestrator.locks,
        )
        self._tasks: list[PeriodicTask] = []

    @property
    def connections(self):
        return self.database.connections

    async def start(self) -> bool:
        """Open the database, seed the global configuration and build the detection stack.

        Returns:
            False when the database could not be initialized.
        """
        if not await self.database.initialize():
            return False
        await self.seed_global_config()

        self.http_session = aiohttp.ClientSession()
        self.registry = build_default_registry(
            self.feed,
            session=self.http_session,
            similarity_refresh_seconds=self.config.similarity_refresh_seconds,
        )
        self.engine = DetectionEngine(
            self.registry,
            concurrency_limit=self.config.detection_concurrency,
            deadline=self.config.detection_deadline,
        )
        self.pipeline = ModerationPipeline(
            self.engine,
            self.connections,
            self.feed,
            self.orchestrator,
            reporter=self.reporter,
            default_policy=self.config.detection_policy,
        )
        logger.info("[RUNTIME] Detection stack ready with checks: %s",
                    ", ".join(str(name) for name in self.registry.names))
        return True

    async def seed_global_config(self) -> int:
        """Write global check records and policy from the config file where none exist yet.

        Records already in the database are left alone so changes made at
        runtime survive restarts.

        Returns:
            Number of rows written.
        """
        written = 0
        async with self.connections.transaction() as conn:
            existing = await CheckConfigRepo.get_checks(conn, None)
            for name, config in self.config.default_check_configs.items():
                if name in existing:
                    continue
                await CheckConfigRepo.upsert_check(conn, None, config)
                written += 1
            if await CheckConfigRepo.get_policy(conn, None) is None:
                await CheckConfigRepo.upsert_policy(conn, None, self.config.detection_policy)
                written += 1
        if written:
            logger.info("[RUNTIME] Seeded %d global configuration rows", written)
        return written

    def start_background_tasks(self) -> None:
        """Start the reconciler and maintenance loops. Safe to call more than once."""
        if not self._tasks:
            self._tasks = [
                self.reconciler.scheduler(self.config.reconciler_interval),
                PeriodicTask("MAINTENANCE", self.run_maintenance, lambda: self.config.maintenance_interval),
            ]
        for task in self._tasks:
            if not task.running:
                task.start()

    async def run_maintenance(self) -> None:
        """Retention cleanup of finished action records and training corpus pruning."""
        removed = await self.database.cleanup_action_records(self.config.retention_days)
        pruned = await self.feed.prune()
        await self.database.analyze()
        logger.info("[MAINTENANCE] Removed %d action records, pruned %d training samples", removed, pruned)

    async def shutdown(self) -> None:
        for task in self._tasks:
            await task.shutdown()
        if self.registry is not None:
            await self.registry.close()
        if self.http_session is not None and not self.http_session.closed:
            await self.http_session.close()
        await self.database.shutdown()
        logger.info("[RUNTIME] Shutdown complete")
