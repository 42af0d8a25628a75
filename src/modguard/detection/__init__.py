"""
Spam detection.

- **scope_resolver.py**: Effective per-check config from the global record and
  a community override.
- **aggregation.py**: Net and accuracy confidence, verdict and policy
  classification (auto-ban, review, allow) with the short-message veto.
- **detection_engine.py**: Runs the planned checks concurrently under per-check
  timeouts and an overall deadline.
- **training_feed.py**: Bounded corpus of labeled samples that the statistical
  checks pull from.
- **checks/**: The closed set of built-in checks.
"""
