"""Local history layer.

The merge engine and the on-disk store. Everything that changes persisted
history goes through :func:`merge` and the atomic ``persist_*`` functions.
"""

from pytimeflip.history.merge import merge, next_start_id
from pytimeflip.history.store import load_entries, load_history, persist_entries, persist_history

__all__ = [
    "load_entries",
    "load_history",
    "merge",
    "next_start_id",
    "persist_entries",
    "persist_history",
]
