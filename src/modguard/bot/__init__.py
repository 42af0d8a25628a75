"""
Discord-facing layer: runtime wiring and cogs.
"""
