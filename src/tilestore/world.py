from esper import World

from tilestore.config import StoreConfig
from tilestore.events.bus import EventBus
from tilestore.storage import TileStorage
from tilestore.systems.placement_tracker import PlacementTracker


def create_storage(
    event_bus: EventBus | None = None,
    config: StoreConfig | None = None,
    *,
    world: World | None = None,
    track_placements: bool = True,
) -> TileStorage:
    """Build a storage with its own chunk world and, by default, a placement tracker."""
    event_bus = event_bus if event_bus is not None else EventBus()
    tracker = PlacementTracker(event_bus) if track_placements else None
    return TileStorage(world if world is not None else World(), event_bus, config, tracker=tracker)
