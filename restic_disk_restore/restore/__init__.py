"""Restore planning and execution stages."""

from .pipeline import completion_summary, initial_context, run_restore


__all__ = ["completion_summary", "initial_context", "run_restore"]
