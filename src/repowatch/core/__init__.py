"""Core domain package for repowatch.

Core holds the repository identity type, the storage port and its error
taxonomy without any SQLite or Telegram specific code.
"""
