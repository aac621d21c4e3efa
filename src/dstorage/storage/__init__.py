"""Content store implementations."""

from .blobstore import LocalContentStore

__all__ = ["LocalContentStore"]
