"""Chat model construction and response helpers shared by the agents."""

from __future__ import annotations

import json
import logging
from typing import Any

from langchain.chat_models import init_chat_model
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage

from config.schema import LLMConfig
from core.task.types import ToolCall

logger = logging.getLogger(__name__)


def create_chat_model(config: LLMConfig) -> BaseChatModel:
    kwargs: dict[str, Any] = {}
    if config.model_provider:
        kwargs["model_provider"] = config.model_provider
    if config.api_key:
        kwargs["api_key"] = config.api_key
    if config.temperature is not None:
        kwargs["temperature"] = config.temperature
    logger.info("Initializing chat model %s (provider=%s)", config.model, config.model_provider)
    return init_chat_model(config.model, **kwargs)


def message_text(message: BaseMessage) -> str:
    """Flatten str or content-block message content to text."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "\n".join(parts)


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse a JSON object, tolerating a surrounding markdown fence or prose."""
    body = text.strip()
    if body.startswith("```"):
        body = body.split("\n", 1)[1] if "\n" in body else ""
        if body.rstrip().endswith("```"):
            body = body.rstrip()[:-3]
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        # prose around the object: take the outermost braces
        start, end = body.find("{"), body.rfind("}")
        if start == -1 or end <= start:
            raise
        parsed = json.loads(body[start : end + 1])
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def format_tool_calls(tool_calls: list[ToolCall], preview: int = 200) -> str:
    if not tool_calls:
        return "(none)"
    lines = []
    for i, tc in enumerate(tool_calls, 1):
        result = tc.result if len(tc.result) <= preview else tc.result[:preview] + "..."
        lines.append(f"{i}. {tc.tool}({json.dumps(tc.args, ensure_ascii=False)})\n   Result: {result}")
    return "\n".join(lines)
