"""Immutable client-side state: the process-wide session and the focused thread view."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from tandem.events import (
    Message,
    OmStatusEvent,
    PendingPlanApproval,
    PendingQuestion,
    PendingToolApproval,
    TaskItem,
    TokenUsage,
)

ToolStatus = Literal["running", "approval_required", "approval_responded", "completed", "error"]
SubagentStatus = Literal["running", "completed", "error"]
ViewStatus = Literal["idle", "streaming"]
NotificationKind = Literal["ask_question", "tool_approval", "plan_approval"]

TERMINAL_TOOL_STATUSES = frozenset({"completed", "error"})


@dataclass(frozen=True)
class ToolState:
    tool_call_id: str
    tool_name: str
    args: Any = None
    status: ToolStatus = "running"
    result: Any = None
    partial_result: Any = None
    is_error: bool = False
    shell_output: str | None = None

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL_TOOL_STATUSES


@dataclass(frozen=True)
class SubagentToolState:
    tool_name: str
    args: Any = None
    status: SubagentStatus = "running"
    result: Any = None
    is_error: bool = False
    sub_tool_call_id: str | None = None


@dataclass(frozen=True)
class SubagentState:
    tool_call_id: str
    agent_type: str = ""
    task: str = ""
    model_id: str = ""
    status: SubagentStatus = "running"
    text: str = ""
    nested_tools: tuple[SubagentToolState, ...] = ()
    result: Any = None
    is_error: bool = False
    duration_ms: int | None = None


@dataclass(frozen=True)
class ThreadView:
    """Materialized state of the focused thread.

    Maps are never mutated in place; the reducer copies them before writing,
    so a view handed to a listener stays valid after later events.
    """

    messages: tuple[Message, ...] = ()
    current_streaming_message: Message | None = None
    status: ViewStatus = "idle"
    tools: Mapping[str, ToolState] = field(default_factory=dict)
    subagents: Mapping[str, SubagentState] = field(default_factory=dict)
    pending_question: PendingQuestion | None = None
    pending_tool_approval: PendingToolApproval | None = None
    pending_plan_approval: PendingPlanApproval | None = None
    tasks: tuple[TaskItem, ...] = ()
    token_usage: TokenUsage | None = None
    current_mode_id: str = ""
    current_model_id: str = ""
    follow_up_count: int = 0
    error: str | None = None
    info_message: str | None = None
    om_status: OmStatusEvent | None = None

    @property
    def streaming(self) -> bool:
        return self.status == "streaming"

    def message_ids(self) -> set[str]:
        return {message.id for message in self.messages}


@dataclass(frozen=True)
class ActiveThreadInfo:
    running: bool = False
    channel: str = ""


@dataclass(frozen=True)
class BackgroundNotification:
    thread_id: str
    kind: NotificationKind
    payload: Any


@dataclass(frozen=True)
class Session:
    connected: bool = False
    current_thread_id: str | None = None
    active_threads: Mapping[str, ActiveThreadInfo] = field(default_factory=dict)
    background_notifications: tuple[BackgroundNotification, ...] = ()

    def is_focused(self, thread_id: str | None) -> bool:
        """Events without a thread id apply to whatever is focused."""
        return thread_id is None or thread_id == self.current_thread_id
