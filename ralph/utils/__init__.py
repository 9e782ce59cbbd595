"""Utility functions for ralph."""

from ralph.utils.helpers import ensure_dir, get_data_dir

__all__ = ["ensure_dir", "get_data_dir"]
