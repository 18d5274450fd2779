"""
contact_sync.sync - Sync core module

Contact model, sync log state machine, conflict handling and the sync
engine. Import submodules directly; the engine and conflict modules depend
on contact_sync.storage, which depends on the models defined here.
"""
