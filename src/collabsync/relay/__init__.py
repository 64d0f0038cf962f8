"""Development relay server for the sync protocol."""

from collabsync.relay.manager import RelayManager
from collabsync.relay.server import app

__all__ = ["RelayManager", "app"]
