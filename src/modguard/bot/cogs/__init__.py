"""
Cogs package.
Each module defines a cog class and a ``setup(bot, runtime)`` function.
The cogs are loaded explicitly in main.py.
"""
