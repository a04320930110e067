"""Pure reducer from (thread view, event) to the next thread view.

Used both for live delivery and for replaying a run buffer. Each event kind
has exactly one case in `_CASES`; kinds that carry nothing for the focused
view map to `_ignore` so that adding a kind to the union without deciding
what it does fails loudly instead of being dropped.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from tandem.events import (
    AgentEndEvent,
    AgentStartEvent,
    AskQuestionEvent,
    ErrorEvent,
    Event,
    FollowUpQueuedEvent,
    InfoEvent,
    Message,
    MessageEndEvent,
    MessagePart,
    MessageStartEvent,
    MessageUpdateEvent,
    ModeChangedEvent,
    ModelChangedEvent,
    OmStatusEvent,
    PendingPlanApproval,
    PendingQuestion,
    PendingToolApproval,
    PlanApprovalRequiredEvent,
    ShellOutputEvent,
    SubagentEndEvent,
    SubagentModelChangedEvent,
    SubagentStartEvent,
    SubagentTextDeltaEvent,
    SubagentToolEndEvent,
    SubagentToolStartEvent,
    TaskUpdatedEvent,
    ToolApprovalRequiredEvent,
    ToolEndEvent,
    ToolStartEvent,
    ToolUpdateEvent,
    UsageUpdateEvent,
    UserMessageEvent,
)
from tandem.state import SubagentState, SubagentToolState, ThreadView, ToolState

Case = Callable[[ThreadView, Any, bool], ThreadView]


def empty_view() -> ThreadView:
    return ThreadView()


def reset_for_switch(view: ThreadView) -> ThreadView:
    """Blank view for a newly focused thread; mode and model are service-wide and kept."""
    return ThreadView(current_mode_id=view.current_mode_id, current_model_id=view.current_model_id)


def reset_run_state(view: ThreadView) -> ThreadView:
    return replace(view, tools={}, subagents={})


def clear_transient(view: ThreadView) -> ThreadView:
    """Drop everything that only exists while a run is open."""
    return replace(
        view,
        status="idle",
        current_streaming_message=None,
        tools={},
        subagents={},
        pending_question=None,
        pending_tool_approval=None,
        pending_plan_approval=None,
    )


def new_user_message(text: str, created_at: datetime | None = None) -> Message:
    """Synthesize a local user message; ids only need to be unique on this client."""
    millis = int(time.time() * 1000)
    return Message(
        id=f"user-{millis}-{secrets.token_hex(3)}",
        role="user",
        content=[MessagePart(type="text", text=text)],
        created_at=created_at or datetime.now(timezone.utc),
    )


def has_user_message(view: ThreadView, text: str) -> bool:
    return any(message.role == "user" and message.has_text(text) for message in view.messages)


def display_messages(view: ThreadView) -> list[Message]:
    """Finalized messages with the streaming snapshot merged in by id."""
    streaming = view.current_streaming_message
    if streaming is None:
        return list(view.messages)
    merged = [streaming if message.id == streaming.id else message for message in view.messages]
    if not any(message.id == streaming.id for message in view.messages):
        merged.append(streaming)
    return merged


def apply(view: ThreadView, event: Event, is_replay: bool = False) -> ThreadView:
    case = _CASES.get(event.type)
    if case is None:
        raise TypeError(f"No reducer case for event type {event.type!r}")
    return case(view, event, is_replay)


def replay(view: ThreadView, events: Iterable[Event], is_replay: bool = True) -> ThreadView:
    for event in events:
        view = apply(view, event, is_replay)
    return view


# --- lifecycle -------------------------------------------------------------


def _agent_start(view: ThreadView, event: AgentStartEvent, is_replay: bool) -> ThreadView:
    # Replayed buffers have already rebuilt tools/subagents from earlier events.
    if is_replay:
        return replace(view, status="streaming", error=None)
    return replace(view, status="streaming", error=None, tools={}, subagents={})


def _agent_end(view: ThreadView, event: AgentEndEvent, is_replay: bool) -> ThreadView:
    return replace(view, status="idle", current_streaming_message=None)


def _info(view: ThreadView, event: InfoEvent, is_replay: bool) -> ThreadView:
    return replace(view, info_message=event.message)


def _error(view: ThreadView, event: ErrorEvent, is_replay: bool) -> ThreadView:
    return replace(view, error=event.message)


# --- messages --------------------------------------------------------------


def _user_message(view: ThreadView, event: UserMessageEvent, is_replay: bool) -> ThreadView:
    if has_user_message(view, event.content):
        return view
    message = new_user_message(event.content, event.created_at)
    return replace(view, messages=(*view.messages, message))


def _message_snapshot(
    view: ThreadView, event: MessageStartEvent | MessageUpdateEvent, is_replay: bool
) -> ThreadView:
    return replace(view, current_streaming_message=event.message)


def _message_end(view: ThreadView, event: MessageEndEvent, is_replay: bool) -> ThreadView:
    final = event.message
    if final.id in view.message_ids():
        messages = tuple(final if message.id == final.id else message for message in view.messages)
    else:
        messages = (*view.messages, final)
    return replace(view, messages=messages, current_streaming_message=None)


# --- tools -----------------------------------------------------------------


def _with_tool(view: ThreadView, tool: ToolState, **changes: Any) -> ThreadView:
    tools = dict(view.tools)
    tools[tool.tool_call_id] = tool
    return replace(view, tools=tools, **changes)


def _tool_start(view: ThreadView, event: ToolStartEvent, is_replay: bool) -> ThreadView:
    prev = view.tools.get(event.tool_call_id)
    if prev is not None and prev.finished:
        return view
    return _with_tool(
        view,
        ToolState(tool_call_id=event.tool_call_id, tool_name=event.tool_name, args=event.args),
    )


def _tool_update(view: ThreadView, event: ToolUpdateEvent, is_replay: bool) -> ThreadView:
    prev = view.tools.get(event.tool_call_id)
    if prev is None or prev.finished:
        return view
    return _with_tool(view, replace(prev, partial_result=event.partial_result))


def _tool_approval_required(
    view: ThreadView, event: ToolApprovalRequiredEvent, is_replay: bool
) -> ThreadView:
    prev = view.tools.get(event.tool_call_id)
    if prev is not None and prev.finished:
        return view
    tool = ToolState(
        tool_call_id=event.tool_call_id,
        tool_name=event.tool_name,
        args=event.args,
        status="approval_required",
        partial_result=prev.partial_result if prev else None,
        shell_output=prev.shell_output if prev else None,
    )
    pending = PendingToolApproval(tool_call_id=event.tool_call_id, tool_name=event.tool_name, args=event.args)
    return _with_tool(view, tool, pending_tool_approval=pending)


def _tool_end(view: ThreadView, event: ToolEndEvent, is_replay: bool) -> ThreadView:
    prev = view.tools.get(event.tool_call_id)
    if prev is not None and prev.finished:
        return view
    tool = ToolState(
        tool_call_id=event.tool_call_id,
        tool_name=prev.tool_name if prev else "",
        args=prev.args if prev else None,
        status="error" if event.is_error else "completed",
        result=event.result,
        is_error=event.is_error,
        shell_output=prev.shell_output if prev else None,
    )
    pending = view.pending_tool_approval
    if pending is not None and pending.tool_call_id == event.tool_call_id:
        pending = None
    return _with_tool(view, tool, pending_tool_approval=pending)


def _shell_output(view: ThreadView, event: ShellOutputEvent, is_replay: bool) -> ThreadView:
    prev = view.tools.get(event.tool_call_id)
    if prev is None or prev.finished:
        return view
    return _with_tool(view, replace(prev, shell_output=(prev.shell_output or "") + event.output))


# --- subagents -------------------------------------------------------------


def _with_subagent(view: ThreadView, subagent: SubagentState) -> ThreadView:
    subagents = dict(view.subagents)
    subagents[subagent.tool_call_id] = subagent
    return replace(view, subagents=subagents)


def _running_subagent(view: ThreadView, tool_call_id: str | None) -> SubagentState | None:
    if tool_call_id is None:
        return None
    subagent = view.subagents.get(tool_call_id)
    if subagent is None or subagent.status != "running":
        return None
    return subagent


def _subagent_start(view: ThreadView, event: SubagentStartEvent, is_replay: bool) -> ThreadView:
    prev = view.subagents.get(event.tool_call_id)
    if prev is not None and prev.status != "running":
        return view
    return _with_subagent(
        view,
        SubagentState(
            tool_call_id=event.tool_call_id,
            agent_type=event.agent_type,
            task=event.task,
            model_id=event.model_id,
        ),
    )


def _subagent_text_delta(view: ThreadView, event: SubagentTextDeltaEvent, is_replay: bool) -> ThreadView:
    prev = _running_subagent(view, event.tool_call_id)
    if prev is None:
        return view
    return _with_subagent(view, replace(prev, text=prev.text + event.text_delta))


def _subagent_tool_start(view: ThreadView, event: SubagentToolStartEvent, is_replay: bool) -> ThreadView:
    prev = _running_subagent(view, event.tool_call_id)
    if prev is None:
        return view
    nested = SubagentToolState(
        tool_name=event.sub_tool_name,
        args=event.sub_tool_args,
        sub_tool_call_id=event.sub_tool_call_id,
    )
    return _with_subagent(view, replace(prev, nested_tools=(*prev.nested_tools, nested)))


def _match_nested_tool(subagent: SubagentState, event: SubagentToolEndEvent) -> int | None:
    """Index of the nested call this end event finishes.

    An explicit `subToolCallId` is authoritative. Without one the protocol
    only gives us the tool name, so the oldest running call with that name
    is taken.
    """

    for index, tool in enumerate(subagent.nested_tools):
        if tool.status != "running":
            continue
        if event.sub_tool_call_id is not None:
            if tool.sub_tool_call_id == event.sub_tool_call_id:
                return index
        elif tool.tool_name == event.sub_tool_name:
            return index
    return None


def _subagent_tool_end(view: ThreadView, event: SubagentToolEndEvent, is_replay: bool) -> ThreadView:
    prev = _running_subagent(view, event.tool_call_id)
    if prev is None:
        return view
    index = _match_nested_tool(prev, event)
    if index is None:
        return view
    nested = list(prev.nested_tools)
    nested[index] = replace(
        nested[index],
        status="error" if event.is_error else "completed",
        result=event.sub_tool_result,
        is_error=event.is_error,
    )
    return _with_subagent(view, replace(prev, nested_tools=tuple(nested)))


def _subagent_end(view: ThreadView, event: SubagentEndEvent, is_replay: bool) -> ThreadView:
    prev = _running_subagent(view, event.tool_call_id)
    if prev is None:
        return view
    return _with_subagent(
        view,
        replace(
            prev,
            status="error" if event.is_error else "completed",
            result=event.result,
            is_error=event.is_error,
            duration_ms=event.duration_ms,
        ),
    )


def _subagent_model_changed(
    view: ThreadView, event: SubagentModelChangedEvent, is_replay: bool
) -> ThreadView:
    prev = _running_subagent(view, event.tool_call_id)
    if prev is None or not event.model_id:
        return view
    return _with_subagent(view, replace(prev, model_id=event.model_id))


# --- interactive requests --------------------------------------------------


def _ask_question(view: ThreadView, event: AskQuestionEvent, is_replay: bool) -> ThreadView:
    pending = PendingQuestion(question_id=event.question_id, question=event.question, options=event.options)
    return replace(view, pending_question=pending)


def _plan_approval_required(
    view: ThreadView, event: PlanApprovalRequiredEvent, is_replay: bool
) -> ThreadView:
    pending = PendingPlanApproval(plan_id=event.plan_id, title=event.title, plan=event.plan)
    return replace(view, pending_plan_approval=pending)


def _plan_approved(view: ThreadView, event: Any, is_replay: bool) -> ThreadView:
    return replace(view, pending_plan_approval=None)


# --- field replacement -----------------------------------------------------


def _mode_changed(view: ThreadView, event: ModeChangedEvent, is_replay: bool) -> ThreadView:
    return replace(view, current_mode_id=event.mode_id)


def _model_changed(view: ThreadView, event: ModelChangedEvent, is_replay: bool) -> ThreadView:
    return replace(view, current_model_id=event.model_id)


def _usage_update(view: ThreadView, event: UsageUpdateEvent, is_replay: bool) -> ThreadView:
    return replace(view, token_usage=event.usage)


def _follow_up_queued(view: ThreadView, event: FollowUpQueuedEvent, is_replay: bool) -> ThreadView:
    return replace(view, follow_up_count=event.count)


def _task_updated(view: ThreadView, event: TaskUpdatedEvent, is_replay: bool) -> ThreadView:
    return replace(view, tasks=tuple(event.tasks))


def _om_status(view: ThreadView, event: OmStatusEvent, is_replay: bool) -> ThreadView:
    return replace(view, om_status=event)


def _ignore(view: ThreadView, event: Any, is_replay: bool) -> ThreadView:
    return view


_CASES: dict[str, Case] = {
    "agent_start": _agent_start,
    "agent_end": _agent_end,
    "info": _info,
    "error": _error,
    "user_message": _user_message,
    "message_start": _message_snapshot,
    "message_update": _message_snapshot,
    "message_end": _message_end,
    "tool_start": _tool_start,
    "tool_update": _tool_update,
    "tool_approval_required": _tool_approval_required,
    "tool_end": _tool_end,
    "shell_output": _shell_output,
    "subagent_start": _subagent_start,
    "subagent_text_delta": _subagent_text_delta,
    "subagent_tool_start": _subagent_tool_start,
    "subagent_tool_end": _subagent_tool_end,
    "subagent_end": _subagent_end,
    "subagent_model_changed": _subagent_model_changed,
    "mode_changed": _mode_changed,
    "model_changed": _model_changed,
    "ask_question": _ask_question,
    "plan_approval_required": _plan_approval_required,
    "plan_approved": _plan_approved,
    "usage_update": _usage_update,
    "follow_up_queued": _follow_up_queued,
    "task_updated": _task_updated,
    "om_status": _om_status,
    # Recognized kinds that carry nothing for the focused view.
    "thread_created": _ignore,
    "thread_changed": _ignore,
    "state_changed": _ignore,
    "workspace_status_changed": _ignore,
    "workspace_ready": _ignore,
    "workspace_error": _ignore,
    "om_observation_start": _ignore,
    "om_observation_end": _ignore,
    "om_observation_failed": _ignore,
    "om_reflection_start": _ignore,
    "om_reflection_end": _ignore,
    "om_reflection_failed": _ignore,
    "om_model_changed": _ignore,
    "om_buffering_start": _ignore,
    "om_buffering_end": _ignore,
    "om_buffering_failed": _ignore,
    "om_activation": _ignore,
}

HANDLED_EVENT_TYPES = frozenset(_CASES)
