"""Store layer for KubePolicy.

Holds the latest observed state of every watched object.  The controller's
drain task is the only writer; topology builds read copy-on-read snapshots.

Submodules:
    store -- In-memory object registry indexed by group kind and identity.
"""

from kubepolicy.cache.store import Store

__all__ = ["Store"]
