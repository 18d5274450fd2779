"""
contact_sync - Offline contact sync and conflict resolution core

Applies batches of offline contact edits, tracks every change in a sync
log, and resolves divergent edits with local, server or merge strategies.
"""

__version__ = "0.1.0"
