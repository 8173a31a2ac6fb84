from core.gateway.base import RoadmapGateway, ShareLookup
from core.gateway.http import HttpGateway
from core.gateway.local import InProcessGateway

__all__ = [
    "RoadmapGateway",
    "ShareLookup",
    "HttpGateway",
    "InProcessGateway",
]
