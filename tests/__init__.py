"""
Test package for treasury_bot.

Lets test modules share the in-memory chain doubles via `tests.fakes`.
"""
