"""Earthquake safety-confirmation notifier.

Ingests DMData.jp earthquake telegrams from a push feed and a pull feed,
deduplicates them by content hash and dispatches safety-confirmation
messages to Slack workspaces.
"""

__version__ = "1.0.0"
