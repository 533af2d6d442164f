"""Network model, spatial helpers and graph construction."""

from .area_locator import AreaLocator
from .data_source import NetworkData
from .domain_types import Area, BoundedNode, Link, Node, TrafficBehaviourType, estimate_lanes
from .graph_builder import DuplicateVertexError, GraphSettings, NetworkGraphs, build
from .preprocessing import classify_flow_links, determine_road_length_in_areas

__all__ = [
    "Area",
    "AreaLocator",
    "BoundedNode",
    "DuplicateVertexError",
    "GraphSettings",
    "Link",
    "NetworkData",
    "NetworkGraphs",
    "Node",
    "TrafficBehaviourType",
    "build",
    "classify_flow_links",
    "determine_road_length_in_areas",
    "estimate_lanes",
]
