"""
Static-method repositories, one per table family. Each takes an open
aiosqlite connection so callers decide the transaction boundary.
"""
