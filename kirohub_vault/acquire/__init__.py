"""Batch credential acquisition."""

from .batch import BatchAcquirer
from .models import BatchImportResult, ImportItem, ImportItemResult

__all__ = [
    "BatchAcquirer",
    "BatchImportResult",
    "ImportItem",
    "ImportItemResult",
]
