"""ClaudeKit updater.

Transactional update, backup and rollback for ClaudeKit installations.
"""

__version__ = "0.4.0"
