"""repowatch: per-chat repository subscriptions for a notification bot."""

__version__ = "0.1.0"
