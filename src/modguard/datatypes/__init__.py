"""
Core value types shared by every layer.

- **identifiers.py**: Typed snowflake IDs (UserID, GuildID, ChannelID, MessageID).
- **detection_datatypes.py**: Check results, detection policy, content context
  and the immutable Decision with its derived confidence and classification.
- **check_config.py**: Per-check configuration with typed parameter shapes and
  the two-level ScopeConfig passed into each evaluation.
- **action_datatypes.py**: Enforcement intents, action records with their
  Active/Expired/Reversed transitions, and action outcomes.
"""
