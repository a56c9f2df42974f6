"""Version information for restic-disk-restore."""

__version__ = "1.0.0"
