"""UUID-preserving bare-metal disk restore from restic snapshots."""

from .__version__ import __version__

__all__ = ["__version__"]
