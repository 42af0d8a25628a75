"""
Periodic background work.

- **periodic_task.py**: Start/shutdown wrapper running a coroutine on an interval.
- **expiry_reconciler.py**: Claims due action records, lifts the restriction in
  every community and marks them reversed, exactly once per record.
"""
