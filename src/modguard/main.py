"""
Modguard
========

A federated anti-spam bot: every message in every community the bot is in is
scored by an ensemble of checks, spam is banned from all of those communities
at once, and administrators get commands for manual, equally federated
moderation.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. MODGUARD_HOME environment variable, if set.
    2. If running in a frozen/compiled context, use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of this file's directory.
    """
    if env_home := os.getenv("MODGUARD_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio
import discord
from dotenv import load_dotenv

from modguard.util.logger import get_logger, handle_exception

logger = get_logger("main")


def load_environment() -> str:
    """Load environment variables and return the Discord bot token.

    Raises:
        SystemExit: If ``DISCORD_BOT_TOKEN`` is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Intents for message content, member presence and guild events."""
    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.messages = True
    intents.members = True
    intents.dm_messages = True
    return intents


def load_cogs(discord_bot_instance: discord.Bot, runtime) -> None:
    """Register all operational cogs with the bot."""
    from modguard.bot.cogs import events_listener, message_listener, moderation_cmds

    events_listener.setup(discord_bot_instance, runtime)
    message_listener.setup(discord_bot_instance, runtime)
    moderation_cmds.setup(discord_bot_instance, runtime)

    logger.info("All cogs loaded successfully.")


async def start_bot(bot: discord.Bot, token: str) -> None:
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    finally:
        logger.info("Discord bot start routine finished.")


async def shutdown_runtime(bot: discord.Bot, runtime) -> None:
    """Close the Discord connection, then the services."""
    if not bot.is_closed():
        try:
            await bot.close()
        except Exception as exc:
            logger.exception("Error while closing the Discord client: %s", exc)

    try:
        await runtime.shutdown()
    except Exception as exc:
        logger.exception("Error during runtime shutdown: %s", exc)

    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap the runtime and the bot, returning an exit code."""
    token = load_environment()

    from modguard.bot.runtime import ModguardRuntime

    bot = discord.Bot(intents=build_intents())
    runtime = ModguardRuntime(bot)

    try:
        logger.info("Initializing database and detection stack...")
        if not await runtime.start():
            logger.critical("Failed to initialize database")
            await runtime.shutdown()
            return 1
        load_cogs(bot, runtime)
    except Exception as exc:
        logger.critical("Failed to initialize: %s", exc)
        await runtime.shutdown()
        return 1

    exit_code = 0
    try:
        await start_bot(bot, token)
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(bot, runtime)
    return exit_code


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process exit code."""
    sys.excepthook = handle_exception
    logger.info("Starting Modguard…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        return 1
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
