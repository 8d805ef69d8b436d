"""Structured (JSON) model requests validated with pydantic models."""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, ValidationError

from loom.llm.provider import ModelInvoker

if TYPE_CHECKING:
    from loom.graph.conversation import Conversation

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def schema_instructions(schema: type[BaseModel]) -> str:
    """Prompt suffix describing the JSON object the model must return."""
    return (
        "Respond with ONLY a JSON object matching this JSON schema:\n"
        f"{json.dumps(schema.model_json_schema(), ensure_ascii=False)}"
    )


async def invoke_structured(
    invoker: ModelInvoker,
    model: str,
    conversation: Conversation,
    schema: type[T],
) -> T | None:
    """
    Request a JSON object from the model and validate it against `schema`.

    Returns None when the model's output cannot be parsed or validated;
    callers decide on a fallback. Model failures (ModelUnavailable,
    ModelTimeout) propagate.
    """
    response = await invoker.invoke(
        model,
        conversation,
        response_format={"type": "json_object"},
    )

    content = response.content
    try:
        if isinstance(content, dict):
            return schema.model_validate(content)
        if isinstance(content, str):
            # Some providers wrap JSON in prose or code fences
            match = _JSON_OBJECT.search(content)
            if match:
                return schema.model_validate_json(match.group())
    except ValidationError as e:
        logger.warning(f"Structured response from {model} failed validation: {e}")
        return None

    logger.warning(f"Structured response from {model} contained no JSON object")
    return None
