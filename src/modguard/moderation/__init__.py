"""
Enforcement.

- **platform.py**: Black-box enforcement primitives and their Discord implementation.
- **fanout.py**: Bounded concurrent per-community calls with timeouts and a deadline.
- **account_locks.py**: Per-account locks for read-then-act sequences.
- **notification.py**: Private message first, community mention as fallback.
- **orchestrator.py**: Validates intents, enforces in every known community,
  persists one action record and audits the outcome.
- **pipeline.py**: Content in, decision recorded, ban intent out; also the
  review queue and mark-as-spam flows.
- **admin_reports.py**: Best-effort reports to administrator channels.
"""
