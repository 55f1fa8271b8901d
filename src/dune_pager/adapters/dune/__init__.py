"""Dune adapter: endpoint encoding, HTTP clients, pagination and polling."""

from . import urls  # re-export for callers needing low-level helpers
from .client import AsyncDuneClient, DuneClient  # noqa: F401

__all__ = ["DuneClient", "AsyncDuneClient", "urls"]
