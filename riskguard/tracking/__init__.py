# Card Testing Tracker Module
from .store import TrackerStore, InMemoryTrackerStore, RedisTrackerStore
from .tracker import CardTestingTrackerService, recompute_tracker

__all__ = [
    "TrackerStore",
    "InMemoryTrackerStore",
    "RedisTrackerStore",
    "CardTestingTrackerService",
    "recompute_tracker",
]
