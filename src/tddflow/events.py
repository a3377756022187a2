"""Host events consumed by the flow controller.

The host delivers three kinds of events. Each kind is its own frozen
dataclass carrying only the fields valid for it, so handlers dispatch on the
type instead of on a name string.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from tddflow.errors import InvalidInputError


@dataclass(frozen=True, slots=True)
class ToolCallEvent:
    """The agent is about to run a tool. Handlers may veto it."""

    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    tool_call_id: str = ""

    @property
    def path(self) -> str | None:
        value = self.input.get("path")
        if value is None:
            value = self.input.get("file_path")
        return str(value) if value is not None else None

    @property
    def command(self) -> str | None:
        value = self.input.get("command")
        return str(value) if value is not None else None


@dataclass(frozen=True, slots=True)
class ToolResultEvent:
    """A tool finished executing."""

    tool_name: str
    tool_call_id: str = ""
    is_error: bool = False
    content: str = ""


@dataclass(frozen=True, slots=True)
class AgentEndEvent:
    """The agent completed its turn."""

    final_text: str = ""


FlowEvent = ToolCallEvent | ToolResultEvent | AgentEndEvent


@dataclass(frozen=True, slots=True)
class BlockDecision:
    reason: str
    block: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"block": self.block, "reason": self.reason}


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                text = item.get("text")
                if isinstance(text, str):
                    parts.append(text)
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return ""


def parse_event(kind: str, payload: dict[str, Any]) -> FlowEvent:
    """Build an event variant from a host event name and its raw payload."""
    if kind == "tool_call":
        tool_input = payload.get("input")
        return ToolCallEvent(
            tool_name=str(payload.get("toolName") or payload.get("tool_name") or ""),
            input=dict(tool_input) if isinstance(tool_input, dict) else {},
            tool_call_id=str(payload.get("toolCallId") or payload.get("tool_call_id") or ""),
        )
    if kind in {"tool_result", "tool_execution_end"}:
        return ToolResultEvent(
            tool_name=str(payload.get("toolName") or payload.get("tool_name") or ""),
            tool_call_id=str(payload.get("toolCallId") or payload.get("tool_call_id") or ""),
            is_error=bool(payload.get("isError") or payload.get("is_error") or False),
            content=_content_text(payload.get("content")),
        )
    if kind in {"agent_end", "turn_end"}:
        text = payload.get("final_text")
        if text is None:
            messages = payload.get("messages")
            if isinstance(messages, list) and messages:
                last = messages[-1]
                text = _content_text(last.get("content")) if isinstance(last, dict) else ""
        return AgentEndEvent(final_text=str(text or ""))
    raise InvalidInputError(f"Unsupported host event: {kind}")
