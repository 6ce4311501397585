"""
Real-time synchronisation: change notifications and live-query projections.

Writers publish a ChangeEvent after every committed write. A LiveQuery
subscribes to the collections it reads, re-runs its query on each relevant
change and republishes the full result to a single SnapshotSlot.
"""
