"""
Debate pipeline - a multi-round AI vs AI debate with checkpointed memory.

    load memory (debater, opinion, script)
      -> round 1 pro -> save script -> round 1 con -> save script [-> summarize]
      -> ...
      -> closing con -> save script -> closing pro -> save script
      -> judgment -> finalize -> save memory (debater, opinion, script)
      -> finish

Every turn is a sub-graph wrapping a tool loop scoped to one participant's
model. The carried value is a DebateState; each turn appends what it said.
Turn bodies publish presentation events (message, round_separator, verdict)
through the run's event sink, numbering turns with the run's counters.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field

from loom.config import get_debater_models, get_judge_model
from loom.graph.builder import GraphBuilder
from loom.graph.checkpoint import load_memory_node, save_memory_node
from loom.graph.context import ExecutionContext
from loom.graph.conversation import Conversation
from loom.graph.edge import GraphSpec
from loom.graph.executor import GraphExecutor, SubgraphResult
from loom.graph.node import NodeSpec
from loom.graph.tool_loop import build_tool_loop
from loom.llm.provider import ToolCallRequest
from loom.memory.gateway import Concept, FactType, MemoryScope, MemorySubject
from loom.tools.debate import (
    CON_SIDE,
    HOST_TOOLS,
    JUDGE_DEBATE_WINNER,
    OPINION_TOOLS,
    PRO_SIDE,
    RECORD_DEBATE_SCRIPT,
    SAY_TO_USER,
    SCRIPT_TOOLS,
    side_emoji,
)

logger = logging.getLogger(__name__)

# Presentation events
MESSAGE = "message"
ROUND_SEPARATOR = "round_separator"
VERDICT = "verdict"
FINISH = "finish"

TURN_COUNTER = "debate_turns"
CLOSING_COUNTER = "debate_closings"

DEFAULT_TOPIC = "人工智能的利与弊"
DEFAULT_ROUNDS = 3

DEBATER_CONCEPT = Concept(
    keyword="debater-info",
    description="辩方信息包括正反方身份和角色定义、各方使用的LLM模型配置、辩论分工和策略偏好",
    fact_type=FactType.MULTIPLE,
)
OPINION_CONCEPT = Concept(
    keyword="debate-opinions",
    description="辩论论点信息包括辩论的核心议题和主题、正反方的主要论点和观点、双方论点的支撑理由",
    fact_type=FactType.MULTIPLE,
)
SCRIPT_CONCEPT = Concept(
    keyword="debate-scripts",
    description="辩词信息包括各轮辩论的具体发言内容、正反方各轮的辩词和回应、发言的时间和轮次记录",
    fact_type=FactType.MULTIPLE,
)

DEBATER_SUBJECT = MemorySubject(
    name="debater",
    prompt_description="辩方信息 (正方辩方及其LLM配置，辩论角色信息等)",
    priority=1,
)
OPINION_SUBJECT = MemorySubject(
    name="opinion",
    prompt_description="论点信息 (辩论核心论点，主要观点，支撑理由等)",
    priority=2,
)
SCRIPT_SUBJECT = MemorySubject(
    name="script",
    prompt_description="辩词信息 (正反方各轮的具体辩词，发言内容等)",
    priority=3,
)

VERDICT_KEYWORDS = ("最终获胜方", "判决详情", "裁判", "评委", "总结本次辩论", "宣布胜利方")

ToolCallInterceptor = Callable[[ToolCallRequest], ToolCallRequest]


# === STATE ===


class DebateTurn(BaseModel):
    """One speech."""

    number: int
    round: int
    side: str
    model: str
    stage: Literal["round", "closing"] = "round"
    speech: str


class DebateState(BaseModel):
    """The value carried through the debate pipeline."""

    topic: str
    rounds: int = DEFAULT_ROUNDS
    turns: list[DebateTurn] = Field(default_factory=list)
    memory: dict[str, str] = Field(default_factory=dict)
    context_summary: str | None = None
    winner: str | None = None
    verdict: str | None = None
    summary: str | None = None

    def transcript(self) -> str:
        if not self.turns:
            return ""
        return "\n\n".join(f"第 {t.round} 轮, {t.side}: {t.speech}" for t in self.turns)

    def context(self) -> str:
        """Debate context handed to the next speaker."""
        return self.context_summary or self.transcript() or "无历史记录"

    def with_turn(self, turn: DebateTurn) -> DebateState:
        return self.model_copy(update={"turns": [*self.turns, turn]})


@dataclass
class DebateRequest:
    topic: str = DEFAULT_TOPIC
    rounds: int = DEFAULT_ROUNDS


def parse_debate_input(text: str) -> DebateRequest:
    """
    Parse "topic,N轮" (ASCII or full-width comma).

    A blank topic falls back to the default topic; a missing or digit-less
    round count falls back to the default round count, and a count below one
    becomes one.
    """
    parts = text.replace("，", ",").split(",")
    topic = parts[0].strip() or DEFAULT_TOPIC
    rounds = DEFAULT_ROUNDS
    if len(parts) > 1:
        digits = "".join(ch for ch in parts[1] if ch.isdigit())
        if digits:
            rounds = max(int(digits), 1)
    return DebateRequest(topic=topic, rounds=rounds)


def looks_like_verdict(text: str) -> bool:
    return any(keyword in text for keyword in VERDICT_KEYWORDS)


def verdict_interceptor(request: ToolCallRequest) -> ToolCallRequest:
    """
    Treat a verdict recorded as a debate speech as a judgment.

    Some models record the host's verdict with record_debate_script instead
    of calling judge_debate_winner. This rewrites such calls (recognized by
    verdict keywords) into a judge_debate_winner call without a winner.
    """
    if request.name != RECORD_DEBATE_SCRIPT:
        return request
    content = request.arguments.get("script_content", "")
    if not looks_like_verdict(content):
        return request
    return ToolCallRequest(
        id=request.id,
        name=JUDGE_DEBATE_WINNER,
        arguments={"winner": "", "judgment_details": content},
    )


def model_label(model: str) -> str:
    return model.rsplit("/", 1)[-1]


def format_verdict(winner: str, details: str) -> str:
    if winner:
        return f"### 最终获胜方: **{winner}**\n\n#### 判决详情:\n{details}"
    return "#### 裁判文书\n\n" + details.replace("\n", "\n\n")


# === PROMPTS ===


def debater_system_prompt(side: str) -> str:
    return (
        f'你是一位顶级的AI辩手。你的角色是 "{side}"。\n'
        "- **保持角色**: 你的所有发言都必须严格围绕你的立场展开。\n"
        "- **结构清晰**: 你的发言应该有明确的结构 (例如：先重申我方观点，然后反驳对方，最后提出新论据)。\n"
        "- **有力反驳**: 仔细分析对手的论点，并提出直接、有力的反驳。\n"
        "- **全部使用中文**"
    )


JUDGE_SYSTEM_PROMPT = (
    "你是一位经验丰富、立场中立的辩论赛裁判和主持人。\n"
    "你的评判必须公平、逻辑严谨且结构清晰。\n"
    "**你的全部输出都必须是中文。**\n"
    "**你必须做出明确的裁决，不能判为平局。**"
)

SUMMARIZER_PROMPT = (
    "你是一个高效的辩论摘要员。请根据以下完整辩论记录，生成一个简洁、中立的摘要。\n"
    "这个摘要将作为下一轮辩论的上下文。请聚焦核心论点和交锋，删除冗余信息。\n"
    '辩论主题是: "{topic}"。'
)


def _memory_section(state: DebateState) -> str:
    if not state.memory:
        return ""
    lines = [f"[{keyword}]\n{content}" for keyword, content in state.memory.items()]
    return "\n\n历史记忆:\n" + "\n\n".join(lines)


def _turn_task(side: str, model: str, round_no: int, stage: str) -> Callable[[DebateState], str]:
    stance = "支持这个观点并提出强有力的论据" if side == PRO_SIDE else "反对这个观点并提出有力的反驳"

    def build(state: DebateState) -> str:
        if stage == "closing":
            header = f"{side_emoji(side)} 你是{side}辩手总结陈词 ({model_label(model)})"
            duties = (
                f"1. 总结你的核心{'支持' if side == PRO_SIDE else '反对'}理由\n"
                f"2. 必须调用 {RECORD_DEBATE_SCRIPT} 工具记录发言\n"
                f"3. 必须调用 {SAY_TO_USER} 工具输出观点\n"
                "4. 可选使用 analyze_debate_opinions 工具分析整场辩论\n\n"
                "请开始总结陈词！"
            )
        else:
            header = f"{side_emoji(side)} 你是{side}辩手第 {round_no} 轮 ({model_label(model)})"
            first = stance if round_no == 1 else "回应对方的具体质疑点并进一步加强你的论证"
            duties = (
                f"1. {first}\n"
                f"2. 必须调用 {RECORD_DEBATE_SCRIPT} 工具记录你的发言\n"
                f"3. 必须调用 {SAY_TO_USER} 工具输出你的观点\n\n"
                "请立即开始你的辩论发言！"
            )
        return (
            f"{header}\n\n"
            f"辩论主题: {state.topic}\n\n"
            f"辩论上下文:\n{state.context()}"
            f"{_memory_section(state)}\n\n"
            f"你的任务:\n{duties}"
        )

    return build


def _judgment_task(state: DebateState) -> str:
    return (
        "🎙️ 你是辩论主持人和评委 (第三方中立评判)\n\n"
        f"辩论主题: {state.topic}\n\n"
        f"这是完整的辩论历史记录:\n\n{state.transcript() or '无历史记录'}\n\n"
        "请作为专业的辩论主持人：\n"
        "1. 📋 汇总整场辩论：分别总结正方和反方的核心观点和主要论据\n"
        "2. 🔍 专业点评：评价双方论据的说服力和逻辑严密性，指出亮点和不足\n"
        "3. ⚖️ 获胜判定：综合论据的充分性和说服力 (30%)、逻辑推理的严密性 (25%)、"
        "对对方观点的有效回应 (20%)、论述的清晰度和表达力 (15%)、论点的创新性和深度 (10%)，"
        "明确宣布获胜方：🟢 正方获胜 或 🔴 反方获胜\n"
        "4. 📊 评分统计：给双方各项能力打分 (满分10分)\n\n"
        "请务必：\n"
        f"- 调用 {JUDGE_DEBATE_WINNER} 工具宣布获胜方和评判详情\n"
        f"- 调用 {SAY_TO_USER} 工具输出完整的主持人总结\n"
        "- 可选调用 analyze_debate_highlights 工具分析亮点"
    )


# === TURN RESULTS ===


def _calls(result: SubgraphResult, interceptor: ToolCallInterceptor | None) -> list[ToolCallRequest]:
    calls = result.tool_calls()
    if interceptor is None:
        return calls
    return [interceptor(call) for call in calls]


async def _publish_verdict(ctx: ExecutionContext, winner: str, details: str) -> str:
    verdict = format_verdict(winner, details)
    await ctx.emit(ROUND_SEPARATOR, "最终裁决")
    await ctx.emit(VERDICT, verdict)
    return verdict


def _record_turn(
    side: str, model: str, stage: str, interceptor: ToolCallInterceptor | None
) -> Callable:
    async def record(ctx: ExecutionContext, state: DebateState, result: SubgraphResult) -> DebateState:
        calls = _calls(result, interceptor)
        scripts = [
            c.arguments.get("script_content", "") for c in calls if c.name == RECORD_DEBATE_SCRIPT
        ]
        speech = "\n\n".join(s for s in scripts if s) or result.text

        for call in calls:
            if call.name == JUDGE_DEBATE_WINNER:
                await _publish_verdict(
                    ctx, call.arguments.get("winner", ""), call.arguments.get("judgment_details", "")
                )

        if stage == "closing":
            number = ctx.increment(CLOSING_COUNTER)
            round_no = state.rounds
            if number == 1:
                await ctx.emit(ROUND_SEPARATOR, "总结陈词")
            await ctx.emit(VERDICT, f"#### {side} 总结\n\n" + speech.replace("\n", "\n\n"))
        else:
            number = ctx.increment(TURN_COUNTER)
            turn_side = PRO_SIDE if number % 2 == 1 else CON_SIDE
            round_no = (number - 1) // 2 + 1
            if turn_side == PRO_SIDE and round_no <= state.rounds:
                await ctx.emit(ROUND_SEPARATOR, f"第 {round_no} 轮辩论")
            await ctx.emit(
                MESSAGE,
                {
                    "side": turn_side,
                    "model": model_label(model),
                    "speech": speech,
                    "round": round_no,
                    "turn": number,
                },
            )

        logger.info(f"{side_emoji(side)} {side} ({model_label(model)}) {stage} speech done")
        return state.with_turn(
            DebateTurn(
                number=len(state.turns) + 1,
                round=round_no,
                side=side,
                model=model,
                stage=stage,
                speech=speech,
            )
        )

    return record


def _record_judgment(judge_model: str, interceptor: ToolCallInterceptor | None) -> Callable:
    async def record(ctx: ExecutionContext, state: DebateState, result: SubgraphResult) -> DebateState:
        calls = _calls(result, interceptor)
        judgments = [c for c in calls if c.name == JUDGE_DEBATE_WINNER]
        if judgments:
            winner = judgments[-1].arguments.get("winner", "")
            details = judgments[-1].arguments.get("judgment_details", "")
        else:
            scripts = [
                c.arguments.get("script_content", "") for c in calls if c.name == RECORD_DEBATE_SCRIPT
            ]
            winner, details = "", scripts[-1] if scripts else result.text

        verdict = await _publish_verdict(ctx, winner, details)
        logger.info(f"🎙️ Judgment by {model_label(judge_model)} complete (winner: {winner or 'unstated'})")
        return state.model_copy(update={"winner": winner or None, "verdict": verdict})

    return record


# === PIPELINE ===


def _summarize_node(node_id: str, summary_model: str) -> NodeSpec:
    async def summarize(ctx: ExecutionContext, state: DebateState) -> DebateState:
        logger.info(f"📝 Summarizing the debate so far with {summary_model}")
        conversation = Conversation(system_prompt=SUMMARIZER_PROMPT.format(topic=state.topic))
        conversation.add_user_message(state.transcript())
        response = await ctx.invoker.invoke(summary_model, conversation)
        return state.model_copy(update={"context_summary": response.text})

    return NodeSpec(id=node_id, body=summarize, description="Condense the transcript for the next round")


def _finalize_node(pro_model: str, con_model: str, judge_model: str) -> NodeSpec:
    def finalize(ctx: ExecutionContext, state: DebateState) -> DebateState:
        summary = (
            "🏆 AI vs AI 辩论大赛圆满结束！\n\n"
            "📊 本次辩论统计：\n"
            f"- 📌 辩论主题: {state.topic}\n"
            f"- 🟢 正方代表: {model_label(pro_model)}\n"
            f"- 🔴 反方代表: {model_label(con_model)}\n"
            f"- 🎙️ 主持评判: {model_label(judge_model)}\n"
            f"- 🏅 获胜方: {state.winner or '见评判详情'}\n\n"
            "💾 完整辩论记录和评判结果已保存至内存系统\n"
            "🎯 感谢观看这场精彩的AI智能对决！"
        )
        return state.model_copy(update={"summary": summary})

    return NodeSpec(id="finalize", body=finalize, description="Compose the closing summary")


def _merge_memory(keyword: str) -> Callable[[DebateState, str | None], DebateState]:
    def merge(state: DebateState, content: str | None) -> DebateState:
        if content is None:
            return state
        return state.model_copy(update={"memory": {**state.memory, keyword: content}})

    return merge


def _participants(pro_model: str, con_model: str, judge_model: str) -> Callable[[DebateState], str]:
    def describe(state: DebateState) -> str:
        return (
            f"辩论主题: {state.topic}\n"
            f"正方: {pro_model}\n"
            f"反方: {con_model}\n"
            f"主持评判: {judge_model}\n"
            f"轮次: {state.rounds}"
        )

    return describe


def build_debate_pipeline(
    rounds: int = DEFAULT_ROUNDS,
    pro_model: str | None = None,
    con_model: str | None = None,
    judge_model: str | None = None,
    summary_model: str | None = None,
    closing_statements: bool = True,
    interceptor: ToolCallInterceptor | None = None,
    scope: MemoryScope = MemoryScope.PRODUCT,
) -> GraphSpec:
    """
    Build the debate pipeline graph.

    Args:
        rounds: Number of pro/con exchanges
        pro_model: Model arguing for the topic
        con_model: Model arguing against it
        judge_model: Model hosting and judging the debate
        summary_model: When set, condenses the transcript after every round
            and speakers see the summary instead of the full transcript
        closing_statements: Add a closing statement for each side
        interceptor: Rewrites tool calls before a turn's result is read
        scope: Memory scope of the load and save checkpoints

    Returns:
        The pipeline; its input and output are DebateState values
    """
    if rounds < 1:
        raise ValueError("A debate needs at least one round")
    default_pro, default_con = get_debater_models()
    pro_model = pro_model or default_pro
    con_model = con_model or default_con
    judge_model = judge_model or get_judge_model()

    b = GraphBuilder("debate", description=f"{rounds}-round debate with a judge")
    order = [b.START]

    # Load checkpoints
    for node_id, concept, subject in (
        ("load_debater", DEBATER_CONCEPT, DEBATER_SUBJECT),
        ("load_opinion", OPINION_CONCEPT, OPINION_SUBJECT),
        ("load_script", SCRIPT_CONCEPT, SCRIPT_SUBJECT),
    ):
        load = load_memory_node(node_id, concept, subject, scope, merge=_merge_memory(concept.keyword))
        order.append(b.add_node(load))

    loops: dict[tuple[str, str], GraphSpec] = {}

    def add_turn(node_id: str, side: str, round_no: int, stage: str) -> None:
        model = pro_model if side == PRO_SIDE else con_model
        tools = SCRIPT_TOOLS + [SAY_TO_USER] + (OPINION_TOOLS if stage == "closing" else [])
        key = (side, stage)
        if key not in loops:
            loops[key] = build_tool_loop(
                model=model,
                tools=tools,
                graph_id=f"{'pro' if side == PRO_SIDE else 'con'}-{stage}-turn",
            )
        order.append(
            b.add_subgraph(
                node_id,
                loops[key],
                task_builder=_turn_task(side, model, round_no, stage),
                result_builder=_record_turn(side, model, stage, interceptor),
                system_prompt=debater_system_prompt(side),
                name=f"{side} {stage} {round_no}",
            )
        )
        order.append(
            b.add_node(
                save_memory_node(
                    f"save_{node_id}",
                    SCRIPT_CONCEPT,
                    SCRIPT_SUBJECT,
                    scope,
                    content_builder=lambda state: state.transcript(),
                )
            )
        )

    for round_no in range(1, rounds + 1):
        add_turn(f"round_{round_no}_pro", PRO_SIDE, round_no, "round")
        add_turn(f"round_{round_no}_con", CON_SIDE, round_no, "round")
        if summary_model:
            order.append(b.add_node(_summarize_node(f"summarize_round_{round_no}", summary_model)))

    if closing_statements:
        add_turn("closing_con", CON_SIDE, rounds, "closing")
        add_turn("closing_pro", PRO_SIDE, rounds, "closing")

    judge_loop = build_tool_loop(
        model=judge_model,
        tools=OPINION_TOOLS + SCRIPT_TOOLS + HOST_TOOLS + [SAY_TO_USER],
        graph_id="judgment-turn",
    )
    order.append(
        b.add_subgraph(
            "judgment",
            judge_loop,
            task_builder=_judgment_task,
            result_builder=_record_judgment(judge_model, interceptor),
            system_prompt=JUDGE_SYSTEM_PROMPT,
            name="Host judgment",
        )
    )
    order.append(b.add_node(_finalize_node(pro_model, con_model, judge_model)))

    # Save checkpoints
    order.append(
        b.add_node(
            save_memory_node(
                "save_debater",
                DEBATER_CONCEPT,
                DEBATER_SUBJECT,
                scope,
                content_builder=_participants(pro_model, con_model, judge_model),
            )
        )
    )
    order.append(
        b.add_node(
            save_memory_node(
                "save_opinion",
                OPINION_CONCEPT,
                OPINION_SUBJECT,
                scope,
                content_builder=lambda state: state.verdict or "",
            )
        )
    )
    order.append(
        b.add_node(
            save_memory_node(
                "save_script",
                SCRIPT_CONCEPT,
                SCRIPT_SUBJECT,
                scope,
                content_builder=lambda state: state.transcript(),
            )
        )
    )
    order.append(b.FINISH)

    b.chain(*order)
    return b.build()


async def run_debate(
    executor: GraphExecutor,
    topic: str,
    rounds: int = DEFAULT_ROUNDS,
    context: ExecutionContext | None = None,
    **pipeline_options,
) -> DebateState:
    """Build the pipeline for `rounds` and run it on `topic`."""
    graph = build_debate_pipeline(rounds=rounds, **pipeline_options)
    logger.info(f"🎭 Debate on '{topic}' ({rounds} rounds)")
    return await executor.execute(graph, DebateState(topic=topic, rounds=rounds), context)
