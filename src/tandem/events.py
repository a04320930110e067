"""Wire models for the harness event stream and query responses.

Everything the Agent Service pushes or returns is validated here. The event
union is discriminated on `type`; `parse_event` is the only way a payload
becomes an event, so anything untyped or malformed is dropped at this
boundary and never reaches the reducer.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Annotated, Any, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class WireModel(BaseModel):
    """Base for payloads exchanged with the service (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        protected_namespaces=(),
    )


class MessagePart(WireModel):
    model_config = ConfigDict(extra="allow")

    type: str
    text: str | None = None


class Message(WireModel):
    id: str
    role: str
    content: List[MessagePart] = Field(default_factory=list)
    created_at: datetime | None = None

    def text(self) -> str:
        return "".join(part.text or "" for part in self.content if part.type == "text")

    def has_text(self, text: str) -> bool:
        return any(part.type == "text" and part.text == text for part in self.content)


class TokenUsage(WireModel):
    model_config = ConfigDict(extra="allow")

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class TaskItem(WireModel):
    content: str
    status: str = "pending"
    active_form: str | None = None


class QuestionOption(WireModel):
    label: str
    description: str | None = None


class PendingQuestion(WireModel):
    question_id: str
    question: str
    options: List[QuestionOption] | None = None


class PendingToolApproval(WireModel):
    tool_call_id: str
    tool_name: str
    args: Any = None


class PendingPlanApproval(WireModel):
    plan_id: str
    title: str = ""
    plan: str = ""


class PendingState(WireModel):
    question: PendingQuestion | None = None
    tool_approval: PendingToolApproval | None = None
    plan_approval: PendingPlanApproval | None = None


class RunStatus(WireModel):
    """Authoritative snapshot of one thread, as returned by `GET status`.

    `run_buffer` stays raw so one bad entry does not invalidate the snapshot;
    callers feed each entry through `parse_event`.
    """

    running: bool = False
    pending: PendingState = Field(default_factory=PendingState)
    run_buffer: List[dict[str, Any]] = Field(default_factory=list)


class ThreadInfo(WireModel):
    model_config = ConfigDict(extra="allow")

    id: str
    title: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ThreadState(WireModel):
    """Persisted per-thread state (`GET state`); only the task list is consumed."""

    model_config = ConfigDict(extra="allow")

    tasks: List[TaskItem] = Field(default_factory=list)


class ModeInfo(WireModel):
    id: str
    name: str | None = None
    color: str | None = None
    default: bool = False


class ModelInfo(WireModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str | None = None
    provider: str | None = None


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class BaseEvent(WireModel):
    thread_id: str | None = None


class AgentStartEvent(BaseEvent):
    type: Literal["agent_start"]


class AgentEndEvent(BaseEvent):
    type: Literal["agent_end"]
    reason: str | None = None


class InfoEvent(BaseEvent):
    type: Literal["info"]
    message: str = ""


class ErrorEvent(BaseEvent):
    type: Literal["error"]
    error: Any = None

    @property
    def message(self) -> str:
        if isinstance(self.error, dict):
            return str(self.error.get("message") or self.error.get("name") or "Unknown error")
        if self.error is None:
            return "Unknown error"
        return str(self.error)


class UserMessageEvent(BaseEvent):
    type: Literal["user_message"]
    content: str
    created_at: datetime | None = None


class MessageStartEvent(BaseEvent):
    type: Literal["message_start"]
    message: Message


class MessageUpdateEvent(BaseEvent):
    type: Literal["message_update"]
    message: Message


class MessageEndEvent(BaseEvent):
    type: Literal["message_end"]
    message: Message


class ToolStartEvent(BaseEvent):
    type: Literal["tool_start"]
    tool_call_id: str
    tool_name: str
    args: Any = None


class ToolUpdateEvent(BaseEvent):
    type: Literal["tool_update"]
    tool_call_id: str
    partial_result: Any = None


class ToolApprovalRequiredEvent(BaseEvent):
    type: Literal["tool_approval_required"]
    tool_call_id: str
    tool_name: str
    args: Any = None


class ToolEndEvent(BaseEvent):
    type: Literal["tool_end"]
    tool_call_id: str
    result: Any = None
    is_error: bool = False


class ShellOutputEvent(BaseEvent):
    type: Literal["shell_output"]
    tool_call_id: str
    output: str = ""


class SubagentStartEvent(BaseEvent):
    type: Literal["subagent_start"]
    tool_call_id: str
    agent_type: str = ""
    task: str = ""
    model_id: str = ""


class SubagentTextDeltaEvent(BaseEvent):
    type: Literal["subagent_text_delta"]
    tool_call_id: str
    text_delta: str = ""


class SubagentToolStartEvent(BaseEvent):
    type: Literal["subagent_tool_start"]
    tool_call_id: str
    sub_tool_name: str
    sub_tool_args: Any = None
    sub_tool_call_id: str | None = None


class SubagentToolEndEvent(BaseEvent):
    type: Literal["subagent_tool_end"]
    tool_call_id: str
    sub_tool_name: str
    sub_tool_result: Any = None
    is_error: bool = False
    sub_tool_call_id: str | None = None


class SubagentEndEvent(BaseEvent):
    type: Literal["subagent_end"]
    tool_call_id: str
    result: Any = None
    is_error: bool = False
    duration_ms: int | None = None


class SubagentModelChangedEvent(BaseEvent):
    type: Literal["subagent_model_changed"]
    tool_call_id: str | None = None
    model_id: str = ""


class ModeChangedEvent(BaseEvent):
    type: Literal["mode_changed"]
    mode_id: str


class ModelChangedEvent(BaseEvent):
    type: Literal["model_changed"]
    model_id: str


class ThreadLifecycleEvent(BaseEvent):
    """Thread bookkeeping from the pool; the focused view ignores it."""

    model_config = ConfigDict(extra="allow")

    type: Literal["thread_created", "thread_changed", "state_changed"]


class AskQuestionEvent(BaseEvent):
    type: Literal["ask_question"]
    question_id: str
    question: str
    options: List[QuestionOption] | None = None


class PlanApprovalRequiredEvent(BaseEvent):
    type: Literal["plan_approval_required"]
    plan_id: str
    title: str = ""
    plan: str = ""


class PlanApprovedEvent(BaseEvent):
    type: Literal["plan_approved"]
    plan_id: str | None = None


class UsageUpdateEvent(BaseEvent):
    type: Literal["usage_update"]
    usage: TokenUsage


class FollowUpQueuedEvent(BaseEvent):
    type: Literal["follow_up_queued"]
    count: int = 0


class TaskUpdatedEvent(BaseEvent):
    type: Literal["task_updated"]
    tasks: List[TaskItem] = Field(default_factory=list)


class WorkspaceEvent(BaseEvent):
    model_config = ConfigDict(extra="allow")

    type: Literal["workspace_status_changed", "workspace_ready", "workspace_error"]


class OmStatusEvent(BaseEvent):
    """Observational-memory status; kept whole because its fields vary by version."""

    model_config = ConfigDict(extra="allow")

    type: Literal["om_status"]


class OmActivityEvent(BaseEvent):
    model_config = ConfigDict(extra="allow")

    type: Literal[
        "om_observation_start",
        "om_observation_end",
        "om_observation_failed",
        "om_reflection_start",
        "om_reflection_end",
        "om_reflection_failed",
        "om_model_changed",
        "om_buffering_start",
        "om_buffering_end",
        "om_buffering_failed",
        "om_activation",
    ]


Event = Annotated[
    Union[
        AgentStartEvent,
        AgentEndEvent,
        InfoEvent,
        ErrorEvent,
        UserMessageEvent,
        MessageStartEvent,
        MessageUpdateEvent,
        MessageEndEvent,
        ToolStartEvent,
        ToolUpdateEvent,
        ToolApprovalRequiredEvent,
        ToolEndEvent,
        ShellOutputEvent,
        SubagentStartEvent,
        SubagentTextDeltaEvent,
        SubagentToolStartEvent,
        SubagentToolEndEvent,
        SubagentEndEvent,
        SubagentModelChangedEvent,
        ModeChangedEvent,
        ModelChangedEvent,
        ThreadLifecycleEvent,
        AskQuestionEvent,
        PlanApprovalRequiredEvent,
        PlanApprovedEvent,
        UsageUpdateEvent,
        FollowUpQueuedEvent,
        TaskUpdatedEvent,
        WorkspaceEvent,
        OmStatusEvent,
        OmActivityEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(payload: Any) -> Event | None:
    """Validate one decoded payload; returns None for anything unusable."""

    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        logger.debug("Dropping untyped event payload: %r", payload)
        return None
    try:
        return _EVENT_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        logger.debug("Dropping malformed %s event: %s", payload.get("type"), exc.errors(include_url=False))
        return None


def decode_event(data: str) -> Event | None:
    """Decode a frame body (JSON text) into an event."""

    try:
        payload = json.loads(data)
    except (json.JSONDecodeError, TypeError, RecursionError):
        logger.debug("Dropping non-JSON frame: %.120s", data)
        return None
    return parse_event(payload)


def tag_thread(event: Event, thread_id: str) -> Event:
    """Return a copy of `event` attributed to `thread_id`."""

    if event.thread_id == thread_id:
        return event
    return event.model_copy(update={"thread_id": thread_id})


__all__ = [
    "AgentEndEvent",
    "AgentStartEvent",
    "AskQuestionEvent",
    "ErrorEvent",
    "Event",
    "FollowUpQueuedEvent",
    "InfoEvent",
    "Message",
    "MessageEndEvent",
    "MessagePart",
    "MessageStartEvent",
    "MessageUpdateEvent",
    "ModeChangedEvent",
    "ModeInfo",
    "ModelChangedEvent",
    "ModelInfo",
    "OmActivityEvent",
    "OmStatusEvent",
    "PendingPlanApproval",
    "PendingQuestion",
    "PendingState",
    "PendingToolApproval",
    "PlanApprovalRequiredEvent",
    "PlanApprovedEvent",
    "QuestionOption",
    "RunStatus",
    "ShellOutputEvent",
    "SubagentEndEvent",
    "SubagentModelChangedEvent",
    "SubagentStartEvent",
    "SubagentTextDeltaEvent",
    "SubagentToolEndEvent",
    "SubagentToolStartEvent",
    "TaskItem",
    "TaskUpdatedEvent",
    "ThreadInfo",
    "ThreadLifecycleEvent",
    "ThreadState",
    "TokenUsage",
    "ToolApprovalRequiredEvent",
    "ToolEndEvent",
    "ToolStartEvent",
    "ToolUpdateEvent",
    "UsageUpdateEvent",
    "UserMessageEvent",
    "WorkspaceEvent",
    "decode_event",
    "parse_event",
    "tag_thread",
]
