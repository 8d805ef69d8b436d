"""Tests for the best-of joke and poem pickers."""

import pytest

from loom.graph.errors import BranchError
from loom.graph.executor import GraphExecutor
from loom.llm.mock import ScriptedModelInvoker, structured_response, text_response
from loom.llm.provider import ModelUnavailable
from loom.workflows.best_of import BestPoems, build_joke_graph, build_poem_graph

JOKE_MODELS = ["test/a", "test/b", "test/c"]


def joke_invoker(selection) -> ScriptedModelInvoker:
    script = {model: [text_response(f"joke from {model}")] for model in JOKE_MODELS}
    script["test/selector"] = [selection]
    return ScriptedModelInvoker(script)


class TestJokePicker:
    @pytest.mark.asyncio
    async def test_selector_choice_is_returned(self):
        invoker = joke_invoker(structured_response({"index": 2, "reason": "best pun"}))
        graph = build_joke_graph(models=JOKE_MODELS, selector_model="test/selector")

        output = await GraphExecutor(invoker=invoker).execute(graph, "programming")

        assert output == "joke from test/b"
        prompt = invoker.calls[-1].messages[-1]["content"]
        assert "Joke 1:\njoke from test/a" in prompt
        assert "Joke 3:\njoke from test/c" in prompt

    @pytest.mark.asyncio
    async def test_candidates_get_the_topic_and_no_tools(self):
        invoker = joke_invoker(structured_response({"index": 1}))
        graph = build_joke_graph(models=JOKE_MODELS, selector_model="test/selector")

        await GraphExecutor(invoker=invoker).execute(graph, "cats")

        candidate_calls = [c for c in invoker.calls if c.model in JOKE_MODELS]
        assert len(candidate_calls) == 3
        for call in candidate_calls:
            assert call.messages[-1] == {"role": "user", "content": "Tell me a joke about cats."}
            assert call.tool_names == []

    @pytest.mark.asyncio
    async def test_out_of_range_choice_is_clamped(self):
        invoker = joke_invoker(structured_response({"index": 7}))
        graph = build_joke_graph(models=JOKE_MODELS, selector_model="test/selector")
        assert await GraphExecutor(invoker=invoker).execute(graph, "x") == "joke from test/c"

    @pytest.mark.asyncio
    async def test_unusable_selection_falls_back_to_first(self):
        invoker = joke_invoker(text_response("I like the second one"))
        graph = build_joke_graph(models=JOKE_MODELS, selector_model="test/selector")
        assert await GraphExecutor(invoker=invoker).execute(graph, "x") == "joke from test/a"

    @pytest.mark.asyncio
    async def test_selector_outage_falls_back_to_first(self):
        invoker = joke_invoker(ModelUnavailable("selector offline", model="test/selector"))
        graph = build_joke_graph(models=JOKE_MODELS, selector_model="test/selector")
        assert await GraphExecutor(invoker=invoker).execute(graph, "x") == "joke from test/a"

    @pytest.mark.asyncio
    async def test_failed_candidate_fails_the_run(self):
        script = {
            "test/a": [text_response("ok")],
            "test/b": [ModelUnavailable("down", model="test/b")],
            "test/c": [text_response("ok")],
        }
        graph = build_joke_graph(models=JOKE_MODELS, selector_model="test/selector")

        with pytest.raises(BranchError) as exc_info:
            await GraphExecutor(invoker=ScriptedModelInvoker(script)).execute(graph, "x")
        assert exc_info.value.branch_index == 1
        assert isinstance(exc_info.value.cause, ModelUnavailable)


class TestPoemPicker:
    def invoker(self, selection) -> ScriptedModelInvoker:
        script = {
            "test/zh1": [text_response("床前明月光")],
            "test/zh2": [text_response("海上生明月")],
            "test/en1": [text_response("The moon is a silver coin")],
            "test/en2": [text_response("Moonlight on the lake")],
            "test/en3": [text_response("Pale lantern of the night")],
            "test/selector": [selection],
        }
        return ScriptedModelInvoker(script)

    def graph(self):
        return build_poem_graph(
            chinese_models=["test/zh1", "test/zh2"],
            english_models=["test/en1", "test/en2", "test/en3"],
            selector_model="test/selector",
        )

    @pytest.mark.asyncio
    async def test_one_poem_per_language(self):
        invoker = self.invoker(
            structured_response(
                {"chinese_index": 2, "english_index": 9, "chinese_reason": "意境", "english_reason": "imagery"}
            )
        )

        output = await GraphExecutor(invoker=invoker).execute(self.graph(), "月亮")

        assert output == BestPoems(chinese="海上生明月", english="Pale lantern of the night").text()
        prompt = invoker.calls[-1].messages[-1]["content"]
        assert "中文诗词 2:\n海上生明月" in prompt
        assert "English Poem 3:\nPale lantern of the night" in prompt

    @pytest.mark.asyncio
    async def test_selector_failure_takes_first_of_each(self):
        invoker = self.invoker(ModelUnavailable("offline", model="test/selector"))
        output = await GraphExecutor(invoker=invoker).execute(self.graph(), "月亮")
        assert output == BestPoems(chinese="床前明月光", english="The moon is a silver coin").text()

    @pytest.mark.asyncio
    async def test_candidate_prompts(self):
        invoker = self.invoker(structured_response({}))
        await GraphExecutor(invoker=invoker).execute(self.graph(), "春天")

        by_model = {c.model: c for c in invoker.calls}
        assert by_model["test/zh1"].messages[-1]["content"] == "请以「春天」为主题创作一首古诗词。"
        assert by_model["test/en2"].messages[-1]["content"] == "Write an English poem about '春天'."
        assert by_model["test/en2"].messages[0]["role"] == "system"


def test_best_poems_text():
    poems = BestPoems(chinese="静夜思", english="Night Thoughts")
    assert poems.text() == "🀄 中文诗词:\n静夜思\n\n🔤 English Poem:\nNight Thoughts"
