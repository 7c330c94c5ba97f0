"""Append-only journal of accepted import actions."""

from __future__ import annotations

from indexsync.journal.entry import JournalEntry
from indexsync.journal.service import Journal, epoch_seconds

__all__ = ["Journal", "JournalEntry", "epoch_seconds"]
