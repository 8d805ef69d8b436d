"""Tools offered to models by the bundled workflows."""

from loom.tools.chat import ChatChannel
from loom.tools.debate import build_debate_registry
from loom.tools.graph_tool import GraphTool
from loom.tools.weather import WeatherClient

__all__ = [
    "ChatChannel",
    "GraphTool",
    "WeatherClient",
    "build_debate_registry",
]
