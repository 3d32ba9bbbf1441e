"""Merged-column views."""

from tabletalk.merge.manager import ColumnMergeViewManager

__all__ = ["ColumnMergeViewManager"]
