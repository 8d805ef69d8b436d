"""
Command-line interface for loom.

Usage:
    loom debate "人工智能是否会取代人类工作,3轮"
    loom debate --fresh "远程工作对公司文化的利弊"
    loom joke programming
    loom poem 月亮
    loom chat
    loom serve --port 8080
"""

import argparse
import asyncio
import logging
import sys

from loom.config import RuntimeConfig
from loom.graph.errors import GraphError
from loom.graph.executor import GraphExecutor
from loom.llm.litellm import LiteLLMInvoker
from loom.memory.file_store import FileMemoryGateway
from loom.observability.logging import configure_logging
from loom.runtime.event_bus import AgentEvent, EventBus
from loom.tools.debate import build_debate_registry
from loom.workflows.best_of import build_joke_graph, build_poem_graph
from loom.workflows.chat import ChatAssistant, is_exit_command
from loom.workflows.debate import (
    MESSAGE,
    ROUND_SEPARATOR,
    VERDICT,
    parse_debate_input,
    run_debate,
)

logger = logging.getLogger(__name__)


def _invoker(config: RuntimeConfig) -> LiteLLMInvoker:
    return LiteLLMInvoker(
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        timeout=config.request_timeout,
    )


async def _print_debate_event(event: AgentEvent) -> None:
    if event.type == ROUND_SEPARATOR:
        print(f"\n--- {event.data} ---\n")
    elif event.type == MESSAGE:
        turn = event.data
        print(f"🗣️ {turn['side']} ({turn['model']}) 发言:\n{turn['speech']}\n")
    elif event.type == VERDICT:
        print(f"{event.data}\n")


async def _debate(args: argparse.Namespace, config: RuntimeConfig) -> int:
    request = parse_debate_input(args.input)
    rounds = max(args.rounds or request.rounds, 1)

    memory = FileMemoryGateway(config.memory_dir)
    if args.fresh and await memory.clear():
        print("🧹 已清理旧的内存数据")

    bus = EventBus()
    bus.subscribe(_print_debate_event, event_types=[MESSAGE, ROUND_SEPARATOR, VERDICT])
    executor = GraphExecutor(
        invoker=_invoker(config),
        registry=build_debate_registry(),
        memory=memory,
        events=bus,
        max_steps=config.max_steps,
    )

    print(f"🎭 辩论开始！主题：'{request.topic}'，总共 {rounds} 轮\n")
    state = await run_debate(
        executor,
        request.topic,
        rounds,
        pro_model=config.pro_model,
        con_model=config.con_model,
        judge_model=config.judge_model,
        summary_model=args.summary_model or config.summary_model,
    )
    print(f"\n🎉 辩论最终结果：\n{state.summary}")
    return 0


async def _joke(args: argparse.Namespace, config: RuntimeConfig) -> int:
    executor = GraphExecutor(invoker=_invoker(config), max_steps=config.max_steps)
    graph = build_joke_graph(models=config.candidate_models, selector_model=config.model)
    print(await executor.execute(graph, args.topic))
    return 0


async def _poem(args: argparse.Namespace, config: RuntimeConfig) -> int:
    executor = GraphExecutor(invoker=_invoker(config), max_steps=config.max_steps)
    graph = build_poem_graph(
        chinese_models=config.candidate_models,
        english_models=config.candidate_models,
        selector_model=config.model,
    )
    print(await executor.execute(graph, args.keyword))
    return 0


async def _chat(args: argparse.Namespace, config: RuntimeConfig) -> int:
    assistant = ChatAssistant.create(
        _invoker(config),
        model=config.model,
        max_steps=config.max_steps,
        joke_models=config.candidate_models,
        poem_models=config.candidate_models,
    )
    print("🎭 欢迎使用多轮对话助手！")
    print("💬 我可以与您聊天、生成笑话、创作诗歌、查询天气信息！")
    print("🚪 输入 'quit'、'exit' 或 'bye' 结束对话")

    while not assistant.finished:
        try:
            user_input = await asyncio.to_thread(input, "👤 您: ")
        except EOFError:
            break
        if not user_input.strip():
            continue
        if is_exit_command(user_input):
            break
        try:
            await assistant.handle(user_input)
        except GraphError as e:
            logger.error(f"Chat turn failed: {e}")
            print(f"❌ 错误: {e}\n🔄 让我们继续聊天...")

    print("👋 感谢您的使用！再见！")
    return 0


async def _serve(args: argparse.Namespace, config: RuntimeConfig) -> int:
    from loom.server.app import DebateServer, DebateServerConfig

    server = DebateServer(
        _invoker(config),
        memory=FileMemoryGateway(config.memory_dir),
        config=DebateServerConfig(
            host=args.host or config.host,
            port=args.port or config.port,
            max_steps=config.max_steps,
            pro_model=config.pro_model,
            con_model=config.con_model,
            judge_model=config.judge_model,
            summary_model=config.summary_model,
        ),
    )
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loom",
        description="loom - multi-model LLM workflows on a graph engine",
    )
    parser.add_argument("--model", default=None, help="Default model (LiteLLM provider/model id)")
    parser.add_argument("--max-steps", type=int, default=None, help="Node executions allowed per run")
    parser.add_argument("--log-level", default="WARNING", help="Log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    debate = subparsers.add_parser("debate", help="Run an AI vs AI debate")
    debate.add_argument("input", nargs="?", default="", help='"topic,N轮"')
    debate.add_argument("--rounds", type=int, default=None, help="Number of rounds")
    debate.add_argument("--fresh", action="store_true", help="Clear stored debate memory first")
    debate.add_argument("--summary-model", default=None, help="Summarize the transcript between rounds")
    debate.set_defaults(func=_debate)

    joke = subparsers.add_parser("joke", help="Pick the best of several models' jokes")
    joke.add_argument("topic")
    joke.set_defaults(func=_joke)

    poem = subparsers.add_parser("poem", help="Pick the best Chinese and English poems")
    poem.add_argument("keyword")
    poem.set_defaults(func=_poem)

    chat = subparsers.add_parser("chat", help="Interactive chat assistant")
    chat.set_defaults(func=_chat)

    serve = subparsers.add_parser("serve", help="Serve the debate web app")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(func=_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level)

    config = RuntimeConfig()
    if args.model:
        config.model = args.model
    if args.max_steps:
        config.max_steps = args.max_steps

    try:
        return asyncio.run(args.func(args, config))
    except GraphError as e:
        print(f"❌ {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
