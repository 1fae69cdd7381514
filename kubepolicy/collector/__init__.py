"""Collector package for KubePolicy.

Observation sources that feed resource changes into the controller queue.

Submodules
----------
source   -- ObservationSource contract, RawEvent/SyncMarker, PollingSource (list + diff).
watcher  -- ResourceWatcher: list + watch with relist on expiry and exponential back-off.
"""
