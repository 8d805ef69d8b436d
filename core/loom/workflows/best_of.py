"""
Best-of pickers - several models write candidates in parallel, another picks.

Joke picker:   start -> jokes{model_1..model_n} -> answer -> finish
Poem picker:   start -> poems{chinese_1..n, english_1..m} -> answer -> finish

The selector answers with a JSON object holding 1-based indices. Indices are
clamped into range and a selector that fails or returns unusable JSON falls
back to the first candidate, so a working generation is never thrown away.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from loom.config import get_candidate_models, get_preferred_model
from loom.graph.builder import GraphBuilder
from loom.graph.context import ExecutionContext
from loom.graph.conversation import Conversation
from loom.graph.edge import GraphSpec
from loom.graph.node import NodeKind, NodeSpec
from loom.graph.parallel import clamp_selection, select_by_index, synthesize
from loom.llm.provider import ModelResponse
from loom.llm.structured import invoke_structured, schema_instructions

logger = logging.getLogger(__name__)

JOKE_SYSTEM_PROMPT = (
    "You are a comedian. Generate a funny joke about the given topic. "
    "Provide only the joke, no explanations."
)
JOKE_CRITIC_PROMPT = "You are a comedy critic. Select the best joke from the provided options."

CHINESE_POEM_SYSTEM_PROMPT = (
    "你是一位中国古代诗人，精通各种诗体。请根据给定的关键词创作一首相关的中国古诗词。"
    "只返回诗词内容，不要解释。"
)
ENGLISH_POEM_SYSTEM_PROMPT = (
    "You are a skilled English poet. Create a beautiful English poem based on the given keyword. "
    "Provide only the poem content, no explanations."
)
POEM_CRITIC_PROMPT = "你是一位诗歌鉴赏家，精通中英文诗词。请从提供的选项中选择最贴近主题的中文和英文诗词各一首。"


class JokeSelection(BaseModel):
    index: int | None = None
    reason: str = ""


class PoemSelection(BaseModel):
    chinese_index: int | None = None
    english_index: int | None = None
    chinese_reason: str = ""
    english_reason: str = ""


class BestPoems(BaseModel):
    """Chosen poems, one per language."""

    chinese: str
    english: str
    chinese_reason: str = ""
    english_reason: str = ""

    def text(self) -> str:
        return f"🀄 中文诗词:\n{self.chinese}\n\n🔤 English Poem:\n{self.english}"


def _text(output: Any) -> str:
    if isinstance(output, ModelResponse):
        return output.text
    return str(output)


def _candidate(node_id: str, model: str, system_prompt: str, prompt: str) -> NodeSpec:
    """A tool-less model request writing one candidate for the input topic."""
    return NodeSpec(
        id=node_id,
        name=f"{node_id} ({model})",
        kind=NodeKind.MODEL_REQUEST,
        model=model,
        system_prompt=system_prompt,
        prompt_builder=lambda topic: prompt.format(topic=topic),
        tools=[],
    )


def _answer_node(render) -> NodeSpec:
    return NodeSpec(id="answer", body=lambda ctx, value: render(value), description="Render the pick")


# === JOKES ===


def _joke_chooser(selector_model: str):
    async def choose(ctx: ExecutionContext, outputs: list[Any]) -> int | None:
        jokes = [_text(o) for o in outputs]
        logger.info("🎯 Choosing the best joke:")
        for i, joke in enumerate(jokes, 1):
            logger.info(f"   {i}. {joke}")

        listing = "\n\n".join(f"Joke {i}:\n{joke}" for i, joke in enumerate(jokes, 1))
        conversation = Conversation(system_prompt=JOKE_CRITIC_PROMPT)
        conversation.add_user_message(
            f"Here are {len(jokes)} jokes about the same topic:\n\n{listing}\n\n"
            f"Select the best joke by providing the 1-based index (1 to {len(jokes)}) "
            "and explain why it's the best.\n"
            + schema_instructions(JokeSelection)
        )
        selection = await invoke_structured(ctx.invoker, selector_model, conversation, JokeSelection)
        if selection is None:
            return None
        logger.info(f"🏆 Selector picked joke {selection.index}: {selection.reason or 'no reason given'}")
        return selection.index

    return choose


def build_joke_graph(
    models: list[str] | None = None,
    selector_model: str | None = None,
) -> GraphSpec:
    """Graph turning a topic into the best of several models' jokes."""
    models = models or get_candidate_models()
    selector_model = selector_model or get_preferred_model()

    b = GraphBuilder("best-joke", description="Generate jokes in parallel and pick the funniest")
    branches = [
        _candidate(f"joke_{i}", model, JOKE_SYSTEM_PROMPT, "Tell me a joke about {topic}.")
        for i, model in enumerate(models, 1)
    ]
    b.add_parallel_group("jokes", branches, reducer=select_by_index(_joke_chooser(selector_model)))
    b.add_node(_answer_node(_text))
    b.chain(b.START, "jokes", "answer", b.FINISH)
    return b.build()


# === POEMS ===


def _poem_picker(selector_model: str, n_chinese: int):
    async def pick(ctx: ExecutionContext, outputs: list[Any]) -> BestPoems:
        poems = [_text(o) for o in outputs]
        chinese, english = poems[:n_chinese], poems[n_chinese:]

        conversation = Conversation(system_prompt=POEM_CRITIC_PROMPT)
        conversation.add_user_message(
            f"以下是{len(chinese)}首中文古诗词:\n\n"
            + "\n\n".join(f"中文诗词 {i}:\n{p}" for i, p in enumerate(chinese, 1))
            + f"\n\n以下是{len(english)}首英文诗词:\n\n"
            + "\n\n".join(f"English Poem {i}:\n{p}" for i, p in enumerate(english, 1))
            + "\n\n请选择最贴近主题的中文和英文诗词各一首，并说明选择理由。索引从1开始。\n"
            + schema_instructions(PoemSelection)
        )
        try:
            selection = await invoke_structured(ctx.invoker, selector_model, conversation, PoemSelection)
        except Exception as e:
            logger.warning(f"⚠️ Poem selection failed, defaulting to the first poems: {e}")
            selection = None
        selection = selection or PoemSelection()

        ci = clamp_selection(selection.chinese_index, len(chinese))
        ei = clamp_selection(selection.english_index, len(english))
        logger.info(f"🏆 Selector picked Chinese poem {ci + 1} and English poem {ei + 1}")
        return BestPoems(
            chinese=chinese[ci],
            english=english[ei],
            chinese_reason=selection.chinese_reason,
            english_reason=selection.english_reason,
        )

    return pick


def build_poem_graph(
    chinese_models: list[str] | None = None,
    english_models: list[str] | None = None,
    selector_model: str | None = None,
) -> GraphSpec:
    """Graph turning a keyword into the best Chinese and the best English poem."""
    chinese_models = chinese_models or get_candidate_models()
    english_models = english_models or get_candidate_models()
    selector_model = selector_model or get_preferred_model()

    branches = [
        _candidate(f"chinese_{i}", model, CHINESE_POEM_SYSTEM_PROMPT, "请以「{topic}」为主题创作一首古诗词。")
        for i, model in enumerate(chinese_models, 1)
    ] + [
        _candidate(f"english_{i}", model, ENGLISH_POEM_SYSTEM_PROMPT, "Write an English poem about '{topic}'.")
        for i, model in enumerate(english_models, 1)
    ]

    b = GraphBuilder("best-poems", description="Generate poems in parallel and pick one per language")
    b.add_parallel_group("poems", branches, reducer=synthesize(_poem_picker(selector_model, len(chinese_models))))
    b.add_node(_answer_node(lambda poems: poems.text()))
    b.chain(b.START, "poems", "answer", b.FINISH)
    return b.build()
