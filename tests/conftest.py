"""
Pytest configuration and fixtures for Modguard tests.
"""

import asyncio
import os
import sys
import tempfile
from datetime import timedelta
from pathlib import Path

import pytest

# Keep test runs from writing session logs into the repository
os.environ.setdefault("MODGUARD_LOGS_DIR", tempfile.mkdtemp(prefix="modguard-logs-"))

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from modguard.database.database import Database  # noqa: E402
from modguard.datatypes.identifiers import GuildID, UserID  # noqa: E402
from modguard.moderation.platform import EnforcementPlatform, PrivateMessageRefused  # noqa: E402
from modguard.repositories.account_repo import AccountRepo  # noqa: E402


class FakePlatform(EnforcementPlatform):
    """Records every primitive call; failures and hangs are configured per guild."""

    max_mute_duration = timedelta(days=28)

    def __init__(self):
        self.calls = []
        self.fail_in = {}
        self.hang_in = set()
        self.refuse_private = False
        self.fail_community = False
        self.private_sent = []
        self.community_sent = []
        self.deleted = []
        self.admin_reports = []

    async def _maybe_fail(self, guild_id):
        if int(guild_id) in self.hang_in:
            await asyncio.sleep(3600)
        exc = self.fail_in.get(int(guild_id))
        if exc is not None:
            raise exc

    async def restrict(self, guild_id, user_id, action, reason, until=None):
        self.calls.append(("restrict", int(guild_id), int(user_id), action))
        await self._maybe_fail(guild_id)

    async def lift(self, guild_id, user_id, action, reason):
        self.calls.append(("lift", int(guild_id), int(user_id), action))
        await self._maybe_fail(guild_id)

    async def delete_message(self, guild_id, channel_id, message_id):
        self.deleted.append(int(message_id))

    async def send_private(self, user_id, message):
        if self.refuse_private:
            raise PrivateMessageRefused("Cannot send messages to this user")
        self.private_sent.append((int(user_id), message))

    async def send_in_community(self, guild_id, channel_id, user_id, message, reply_to=None):
        if self.fail_community:
            raise RuntimeError("channel gone")
        self.community_sent.append((int(guild_id), int(user_id), message, reply_to))

    async def send_admin_report(self, channel_id, content):
        self.admin_reports.append((int(channel_id), content))

    def calls_of(self, kind):
        return [call for call in self.calls if call[0] == kind]


@pytest.fixture
async def db(tmp_path):
    """Create a temporary test database."""
    database = Database(tmp_path / "test.db")
    assert await database.initialize()
    yield database
    await database.shutdown()


@pytest.fixture
def connections(db):
    return db.connections


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def add_member(connections):
    """Record ``user`` as present in ``guild``."""

    async def _add(guild, user, is_admin=False, dm_enabled=None):
        async with connections.transaction() as conn:
            await AccountRepo.record_join(conn, GuildID(guild), UserID(user), is_admin=is_admin)
            if dm_enabled is not None:
                await AccountRepo.set_dm_enabled(conn, UserID(user), dm_enabled)

    return _add
