"""
Modguard - Federated Anti-Spam and Moderation Bot

Modguard protects a federation of Discord communities from spam, abuse and
impersonation. Many independent, low-confidence detection signals are combined
into a single decision, and that decision is enforced consistently across every
community the affected account belongs to.

Core Components:

- **Detection**: A closed registry of checks, each producing a confidence-scored
  verdict, aggregated under a per-scope policy into one Decision
- **Training Corpus**: Confirmed decisions feed back into statistical checks
- **Moderation Orchestrator**: Federation-wide enforcement of bans, mutes,
  temporary bans and trust grants with per-community partial failure handling
- **Expiry Reconciler**: Periodic sweep that lifts time-bound restrictions exactly once
- **Audit Trail**: Append-only log of every decision and enforcement outcome
"""
from __future__ import annotations

from importlib import metadata as importlib_metadata


try:
    __version__ = importlib_metadata.version("modguard")
except Exception:  # pragma: no cover - fallback when not installed
    __version__ = "0.0.0"


def get_version() -> str:
    """Return the installed distribution version, or the source-tree placeholder."""
    return __version__


__all__ = ["get_version", "__version__"]
