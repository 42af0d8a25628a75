"""
Shared utilities: logging, time helpers, call quotas and Discord helpers.
"""
