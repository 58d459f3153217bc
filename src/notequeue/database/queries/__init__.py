"""Database query functions for notequeue.

Each submodule provides async functions taking an AsyncSession as first
argument. Write functions commit before returning.
"""
