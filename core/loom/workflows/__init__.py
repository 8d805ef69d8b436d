"""Ready-made graphs: debate pipeline, best-of pickers and the chat assistant."""

from loom.workflows.best_of import build_joke_graph, build_poem_graph
from loom.workflows.chat import ChatAssistant, build_chat_graph, build_weather_graph
from loom.workflows.debate import (
    DebateState,
    build_debate_pipeline,
    parse_debate_input,
    run_debate,
    verdict_interceptor,
)

__all__ = [
    "ChatAssistant",
    "DebateState",
    "build_chat_graph",
    "build_debate_pipeline",
    "build_joke_graph",
    "build_poem_graph",
    "build_weather_graph",
    "parse_debate_input",
    "run_debate",
    "verdict_interceptor",
]
