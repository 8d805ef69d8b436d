"""
Debate Tools - the tool sets offered to debaters and the host.

Provides the tools a debate turn may call:
- record_debate_script: record a speech (every turn must call it)
- analyze_debate_opinions: summarize the key arguments so far
- analyze_debater_strategy: comment on a debater's strategy
- judge_debate_winner: announce the winner with scoring details (host only)
- analyze_debate_highlights: describe highlights and turning points (host only)
- say_to_user: show a message to the audience

The handlers only format their arguments; what a turn said is read back from
the turn's tool calls by the debate workflow.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from loom.runner.tool_registry import FunctionTool, ToolRegistry

logger = logging.getLogger(__name__)

RECORD_DEBATE_SCRIPT = "record_debate_script"
ANALYZE_DEBATE_OPINIONS = "analyze_debate_opinions"
ANALYZE_DEBATER_STRATEGY = "analyze_debater_strategy"
JUDGE_DEBATE_WINNER = "judge_debate_winner"
ANALYZE_DEBATE_HIGHLIGHTS = "analyze_debate_highlights"
SAY_TO_USER = "say_to_user"

# Tool names per participant role
SCRIPT_TOOLS = [RECORD_DEBATE_SCRIPT]
OPINION_TOOLS = [ANALYZE_DEBATE_OPINIONS]
DEBATER_TOOLS = [ANALYZE_DEBATER_STRATEGY]
HOST_TOOLS = [JUDGE_DEBATE_WINNER, ANALYZE_DEBATE_HIGHLIGHTS]

SCRIPT_RECORDED = "发言记录成功：内容已保存至辩论记录系统"

PRO_SIDE = "正方"
CON_SIDE = "反方"


def _string_schema(**params: str) -> dict[str, Any]:
    """Input schema of a tool taking only required string parameters."""
    return {
        "type": "object",
        "properties": {name: {"type": "string", "description": desc} for name, desc in params.items()},
        "required": list(params),
    }


def side_emoji(side: str) -> str:
    return "🟢" if PRO_SIDE in side else "🔴"


def record_debate_script(script_content: str) -> str:
    logger.info(f"📝 Debate speech recorded ({len(script_content)} chars)")
    return SCRIPT_RECORDED


def analyze_debate_opinions(opinions_data: str) -> str:
    return (
        "论点分析结果：\n"
        f"关键论点: {opinions_data}\n"
        "论点强度评估：逻辑性、证据支持、说服力已评估\n"
        "建议改进方向：增强事实依据、完善逻辑链条"
    )


def analyze_debater_strategy(strategy_info: str) -> str:
    return f"策略分析：{strategy_info} - 建议注重逻辑严密性和事实依据"


def judge_debate_winner(winner: str, judgment_details: str) -> str:
    return (
        "🏆 辩论评判结果\n\n"
        f"获胜方: {side_emoji(winner)} {winner}\n\n"
        "评判详情:\n"
        f"{judgment_details}\n\n"
        "评判已记录至辩论档案系统"
    )


def analyze_debate_highlights(highlights_analysis: str) -> str:
    return f"✨ 辩论精彩分析\n\n{highlights_analysis}\n\n分析结果已存档"


def register_tools(
    registry: ToolRegistry,
    say: Callable[[str], Any] | None = None,
) -> None:
    """
    Register the debate tools with a registry.

    Args:
        registry: Registry to populate
        say: Where say_to_user messages go (defaults to the log)
    """

    def say_to_user(message: str) -> str:
        if say is not None:
            say(message)
        else:
            logger.info(f"💬 {message}")
        return "消息已发送给用户"

    tools = [
        FunctionTool(
            name=RECORD_DEBATE_SCRIPT,
            description="记录辩论发言。辩手必须使用此工具记录自己的发言内容。",
            func=record_debate_script,
            input_schema=_string_schema(script_content="辩论发言内容"),
        ),
        FunctionTool(
            name=ANALYZE_DEBATE_OPINIONS,
            description="分析和总结辩论论点",
            func=analyze_debate_opinions,
            input_schema=_string_schema(opinions_data="辩论中的关键论点和观点"),
        ),
        FunctionTool(
            name=ANALYZE_DEBATER_STRATEGY,
            description="分析辩论策略",
            func=analyze_debater_strategy,
            input_schema=_string_schema(strategy_info="当前辩论轮次和策略分析"),
        ),
        FunctionTool(
            name=JUDGE_DEBATE_WINNER,
            description="评判辩论获胜方并给出详细评分",
            func=judge_debate_winner,
            input_schema=_string_schema(
                winner="获胜方 (正方 或 反方)",
                judgment_details="获胜理由和评分详情",
            ),
        ),
        FunctionTool(
            name=ANALYZE_DEBATE_HIGHLIGHTS,
            description="分析整场辩论的亮点和关键转折点",
            func=analyze_debate_highlights,
            input_schema=_string_schema(highlights_analysis="辩论亮点和转折点分析"),
        ),
        FunctionTool(
            name=SAY_TO_USER,
            description="向用户（观众）输出一条消息",
            func=say_to_user,
            input_schema=_string_schema(message="要展示给用户的内容"),
        ),
    ]
    for tool in tools:
        registry.register(tool)


def build_debate_registry(say: Callable[[str], Any] | None = None) -> ToolRegistry:
    """Registry holding every debate tool."""
    registry = ToolRegistry()
    register_tools(registry, say=say)
    return registry
