"""Control and query requests on behalf of the user.

Actions aimed at "the current thread" read the focus when they are called
and quietly do nothing when no thread is focused. Local state is only
touched in two places: the optimistic user message in `send_message`, and
the pending slots, which are cleared after the service accepted the answer.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any, get_args

from tandem import notifications
from tandem.api import HarnessAPI, PermissionPolicy, PlanAction, ToolDecision
from tandem.events import Message, ModeInfo, ModelInfo, ThreadInfo
from tandem.log_utils import log_event
from tandem.reducer import new_user_message

if TYPE_CHECKING:
    from tandem.engine import SyncEngine

logger = logging.getLogger(__name__)

TOOL_DECISIONS = frozenset(get_args(ToolDecision))
PLAN_ACTIONS = frozenset(get_args(PlanAction))
PERMISSION_POLICIES = frozenset(get_args(PermissionPolicy))


def _check_choice(name: str, value: str, allowed: frozenset[str]) -> None:
    if value not in allowed:
        raise ValueError(f"Invalid {name} {value!r}; expected one of {sorted(allowed)}")


class ActionGateway:
    def __init__(self, engine: "SyncEngine", api: HarnessAPI) -> None:
        self._engine = engine
        self._api = api

    @property
    def _thread_id(self) -> str | None:
        return self._engine.session.current_thread_id

    def _clear_pending(self, thread_id: str, **slots: Any) -> None:
        """Drop pending slots that still describe the request we just answered.

        The focus may have moved, or a newer request may have replaced the slot,
        while the POST was in flight; both are left alone.
        """

        if self._engine.session.current_thread_id != thread_id:
            return
        view = self._engine.view
        changes = {name: None for name, match in slots.items() if match(getattr(view, name))}
        if changes:
            self._engine.replace_view(replace(view, **changes))

    # --- focused thread ----------------------------------------------------

    async def send_message(self, content: str, images: list[str] | None = None) -> Any:
        thread_id = self._thread_id
        if thread_id is None:
            return None
        # Shown immediately; the echoed user_message event is deduplicated by text.
        view = self._engine.view
        self._engine.replace_view(replace(view, messages=(*view.messages, new_user_message(content))))
        log_event(logger, "action.send", thread_id=thread_id, chars=len(content), images=len(images or []))
        return await self._api.send(thread_id, content, images)

    async def abort(self) -> Any:
        thread_id = self._thread_id
        if thread_id is None:
            return None
        log_event(logger, "action.abort", thread_id=thread_id)
        return await self._api.abort(thread_id)

    async def steer(self, content: str) -> Any:
        thread_id = self._thread_id
        if thread_id is None:
            return None
        return await self._api.steer(thread_id, content)

    async def follow_up(self, content: str) -> Any:
        thread_id = self._thread_id
        if thread_id is None:
            return None
        return await self._api.follow_up(thread_id, content)

    async def switch_mode(self, mode_id: str) -> Any:
        thread_id = self._thread_id
        if thread_id is None:
            return None
        return await self._api.switch_mode(thread_id, mode_id)

    async def switch_model(self, model_id: str, scope: str | None = None, mode_id: str | None = None) -> Any:
        thread_id = self._thread_id
        if thread_id is None:
            return None
        return await self._api.switch_model(thread_id, model_id, scope, mode_id)

    async def resolve_tool_approval(self, decision: ToolDecision) -> Any:
        _check_choice("tool decision", decision, TOOL_DECISIONS)
        thread_id = self._thread_id
        if thread_id is None:
            return None
        pending = self._engine.view.pending_tool_approval
        result = await self._api.tool_approval(thread_id, decision)
        if pending is None:
            return result
        self._clear_pending(
            thread_id,
            pending_tool_approval=lambda slot: slot is not None and slot.tool_call_id == pending.tool_call_id,
        )
        view = self._engine.view
        tool = view.tools.get(pending.tool_call_id)
        if self._engine.session.current_thread_id == thread_id and tool is not None and tool.status == "approval_required":
            tools = dict(view.tools)
            tools[tool.tool_call_id] = replace(tool, status="approval_responded")
            self._engine.replace_view(replace(view, tools=tools))
        return result

    async def respond_to_question(self, question_id: str, answer: str) -> Any:
        thread_id = self._thread_id
        if thread_id is None:
            return None
        result = await self._api.answer(thread_id, question_id, answer)
        self._clear_pending(
            thread_id,
            pending_question=lambda slot: slot is not None and slot.question_id == question_id,
        )
        return result

    async def respond_to_plan_approval(self, plan_id: str, action: PlanAction, feedback: str | None = None) -> Any:
        _check_choice("plan action", action, PLAN_ACTIONS)
        thread_id = self._thread_id
        if thread_id is None:
            return None
        result = await self._api.plan_approval(thread_id, plan_id, action, feedback)
        self._clear_pending(
            thread_id,
            pending_plan_approval=lambda slot: slot is not None and slot.plan_id == plan_id,
        )
        return result

    async def rename_thread(self, title: str) -> Any:
        thread_id = self._thread_id
        if thread_id is None:
            return None
        return await self._api.rename_thread(thread_id, title)

    # --- background threads ------------------------------------------------

    async def respond_to_background_question(self, thread_id: str, question_id: str, answer: str) -> Any:
        result = await self._api.answer(thread_id, question_id, answer)
        self._engine.update_session(notifications.resolve(self._engine.session, thread_id, "ask_question"))
        return result

    async def respond_to_background_tool_approval(self, thread_id: str, decision: ToolDecision) -> Any:
        _check_choice("tool decision", decision, TOOL_DECISIONS)
        result = await self._api.tool_approval(thread_id, decision)
        self._engine.update_session(notifications.resolve(self._engine.session, thread_id, "tool_approval"))
        return result

    async def respond_to_background_plan_approval(
        self,
        thread_id: str,
        plan_id: str,
        action: PlanAction,
        feedback: str | None = None,
    ) -> Any:
        _check_choice("plan action", action, PLAN_ACTIONS)
        result = await self._api.plan_approval(thread_id, plan_id, action, feedback)
        self._engine.update_session(notifications.resolve(self._engine.session, thread_id, "plan_approval"))
        return result

    # --- thread independent ------------------------------------------------

    async def create_thread(self, title: str | None = None) -> str:
        thread_id = await self._api.create_thread(title)
        log_event(logger, "action.thread_created", thread_id=thread_id)
        return thread_id

    async def set_permission_category(self, category: str, policy: PermissionPolicy) -> Any:
        _check_choice("permission policy", policy, PERMISSION_POLICIES)
        return await self._api.update_permission(self._thread_id, policy, category=category)

    async def set_permission_tool(self, tool_name: str, policy: PermissionPolicy) -> Any:
        _check_choice("permission policy", policy, PERMISSION_POLICIES)
        return await self._api.update_permission(self._thread_id, policy, tool_name=tool_name)

    async def grant_session_category(self, category: str) -> Any:
        return await self._api.grant(self._thread_id, category=category)

    async def grant_session_tool(self, tool_name: str) -> Any:
        return await self._api.grant(self._thread_id, tool_name=tool_name)

    # --- queries -------------------------------------------------------------

    async def list_threads(self) -> list[ThreadInfo]:
        return await self._api.list_threads()

    async def get_messages(self, limit: int | None = None) -> list[Message]:
        thread_id = self._thread_id
        if thread_id is None:
            return []
        messages = await self._api.thread_messages(thread_id, limit)
        if self._engine.session.current_thread_id == thread_id:
            self._engine.replace_view(replace(self._engine.view, messages=tuple(messages)))
        return messages

    async def get_session(self) -> dict[str, Any]:
        return await self._api.session()

    async def get_modes(self) -> list[ModeInfo]:
        return await self._api.modes()

    async def get_available_models(self) -> list[ModelInfo]:
        return await self._api.models()

    async def get_permission_rules(self) -> dict[str, Any]:
        return await self._api.permissions()
