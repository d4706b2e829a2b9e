"""Controller routing: the controller tree, filesystem discovery and dispatch."""

from treb.routing.discovery import discover_controllers
from treb.routing.dispatcher import Dispatcher
from treb.routing.tree import ControllerTree, Node, Resolution, split_path

__all__ = [
    "ControllerTree",
    "Dispatcher",
    "Node",
    "Resolution",
    "discover_controllers",
    "split_path",
]
