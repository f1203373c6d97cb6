from ideaboard.services.canvas_sessions import CanvasSessions
from ideaboard.services.canvas_state import CanvasState
from ideaboard.services.connection_state import ConnectionState
from ideaboard.services.entity_mapper import DataEntityMapper
from ideaboard.services.item_gateway import BoardItemGateway, ItemGateway

__all__ = [
    "BoardItemGateway",
    "CanvasSessions",
    "CanvasState",
    "ConnectionState",
    "DataEntityMapper",
    "ItemGateway",
]
