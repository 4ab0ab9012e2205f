from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
from pydantic import ValidationError

from .approval import ApprovalGate, PendingApproval
from .checkpoints import CheckpointLedger
from .event_bus import EventBus, SessionEvent, SessionEventKind
from .history import file_change_history
from .llm.errors import CancellationToken, LLMRequestError
from .llm.stream import StreamNormalizer
from .llm.tokens import TokenUsageTracker
from .llm.types import ChatMessage, ChatRequest, MessageRole, ModelProfile, StreamResult, ToolCall
from .models import (
    AgentEvent,
    AgentEventKind,
    ChatRole,
    ChatTurn,
    Checkpoint,
    CheckpointAction,
    DiffHistoryEntry,
    FileOperationType,
    RollbackResult,
    ToolInvocation,
    ToolStatus,
)
from .models.status import validate_tool_transition
from .notifications import Notifier
from .settings import AgentSettings
from .stores import BlobStore
from .terminal import TerminalBridge
from .tools import Tool, ToolCatalog, ToolExecutionPipeline, result_for_model

logger = logging.getLogger(__name__)

TurnObserver = Callable[[int | None], None]


class SessionError(RuntimeError):
    pass


def messages_blob_name(session_id: str) -> str:
    return f"messages-{session_id}"


def save_turns(store: BlobStore, session_id: str, turns: list[ChatTurn]) -> None:
    store.save_blob(messages_blob_name(session_id), {"turns": [t.model_dump(mode="json") for t in turns]})


def load_turns(store: BlobStore, session_id: str) -> list[ChatTurn] | None:
    """Return the persisted turns of a session, or None when nothing was saved yet."""

    raw = store.load_blob(messages_blob_name(session_id))
    if raw is None:
        return None
    items = raw.get("turns") if isinstance(raw, dict) else None
    if not isinstance(items, list):
        raise SessionError(f"Invalid message blob for session {session_id!r}.")
    try:
        return [ChatTurn.model_validate(item) for item in items]
    except ValidationError as e:
        raise SessionError(f"Invalid message data for session {session_id!r}: {e}") from e


class ChatSession:
    """
    One conversation: its turns, checkpoints, pending approvals and usage.

    All mutation happens on the event loop. Observers are called with the index of the
    changed turn, or None when the turn list was truncated.
    """

    def __init__(
        self,
        *,
        session_id: str,
        profile: ModelProfile,
        settings: AgentSettings,
        store: BlobStore,
        bus: EventBus,
        working_dir: Path | None = None,
        system_prompt: str = "",
        notifier: Notifier | None = None,
        transport: httpx.BaseTransport | None = None,
        tools: list[Tool] | None = None,
    ) -> None:
        self._session_id = session_id
        self.profile = profile
        self.settings = settings
        self.working_dir = (working_dir or Path.cwd()).expanduser()
        self.system_prompt = system_prompt
        self._store = store
        self._bus = bus
        self._observers: list[TurnObserver] = []

        self.turns: list[ChatTurn] = []
        self.cancel = CancellationToken()
        self.usage = TokenUsageTracker()
        self.gate = ApprovalGate(settings=settings, bus=bus, cancel=self.cancel, notifier=notifier)
        self.terminal = TerminalBridge(bus=bus, cancel=self.cancel, poll_interval_s=settings.approval_poll_interval_s)
        self.ledger = CheckpointLedger(
            session_id=session_id,
            turns=self.turns,
            store=store,
            cancel=self.cancel,
            on_history_reset=self._on_history_reset,
        )
        self.pipeline = ToolExecutionPipeline(
            session=self,
            settings=settings,
            gate=self.gate,
            ledger=self.ledger,
            terminal=self.terminal,
            cancel=self.cancel,
        )
        self.catalog = ToolCatalog(tools)
        self._normalizer = StreamNormalizer(
            usage_tracker=self.usage,
            update_interval_s=settings.stream_update_interval_s,
            transport=transport,
        )
        self._unsubscribe = bus.subscribe(self._on_approval_requested, kinds={SessionEventKind.APPROVAL_REQUESTED})

    @property
    def session_id(self) -> str:
        return self._session_id

    # Observers

    def add_observer(self, observer: TurnObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def _remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _remove

    def _notify_changed(self, index: int | None) -> None:
        for observer in list(self._observers):
            try:
                observer(index)
            except Exception:
                logger.exception("Turn observer failed")
        kind = SessionEventKind.TURN_CHANGED if index is not None else SessionEventKind.TURNS_RESET
        self._bus.publish(SessionEvent(kind=kind, session_id=self._session_id, payload={"index": index}))

    # Conversation

    async def submit_user_message(self, text: str) -> str:
        """
        Append a user turn and answer it.

        The model's reply streams into a new assistant turn. While the model asks for tools,
        each call runs through the pipeline, its result is recorded on the assistant turn, and
        the model is asked again, up to `max_tool_iterations` rounds. Returns the text of the
        last assistant turn.
        """

        text = text.strip()
        if not text:
            raise ValueError("Message must be a non-empty string.")

        self.reset_cancellation()
        self.turns.append(ChatTurn(role=ChatRole.USER, content=text))
        self.ledger.create_checkpoint(text)
        self._notify_changed(len(self.turns) - 1)

        rounds = 0
        while True:
            turn, result = await self._stream_assistant_turn()
            if result is None or result.cancelled or not result.tool_calls:
                break
            await self._run_tool_calls(turn, result.tool_calls)
            if self.cancel.cancelled or not self._is_live(turn):
                logger.info("Tool loop stopped by cancellation")
                break
            rounds += 1
            limit = self.settings.max_tool_iterations
            if limit and rounds >= limit:
                logger.warning("Stopping after %d tool round(s)", rounds)
                self.append_event_turn(
                    AgentEvent(
                        kind=AgentEventKind.STATUS,
                        title="Tool limit reached",
                        details=f"Stopped after {rounds} round(s) of tool calls",
                        is_internal=True,
                    )
                )
                break

        self.persist_messages()
        return turn.content

    async def _stream_assistant_turn(self) -> tuple[ChatTurn, StreamResult | None]:
        request = self._build_request()
        turn = ChatTurn(role=ChatRole.ASSISTANT, content="")
        self.turns.append(turn)
        index = len(self.turns) - 1
        self._notify_changed(index)

        def _on_update(accumulated: str) -> None:
            turn.content = accumulated
            # A rollback may have truncated the list while streaming.
            if index < len(self.turns) and self.turns[index] is turn:
                self._notify_changed(index)

        try:
            result = await self._normalizer.run(
                profile=self.profile,
                request=request,
                on_update=_on_update,
                cancel=self.cancel,
            )
        except LLMRequestError as e:
            logger.warning("Model request failed (%s): %s", e.code, e.full_details or e)
            _on_update(f"Error: {e.friendly_message}")
            return turn, None
        if result.cancelled:
            logger.info("Response stopped after %d chars", len(result.text))
        return turn, result

    async def _run_tool_calls(self, turn: ChatTurn, calls: list[ToolCall]) -> None:
        turn.tool_calls = [ToolInvocation(id=c.id, name=c.name, arguments=dict(c.arguments)) for c in calls]
        self.persist_messages()
        for call, invocation in zip(calls, turn.tool_calls):
            if self.cancel.cancelled or not self._is_live(turn):
                break
            logger.info("Model called %s (%s)", call.name, call.id)
            try:
                result = await self.catalog.run(call, pipeline=self.pipeline, working_dir=self.working_dir)
            except SessionError as e:
                # The event turn for this call was dropped by a rollback.
                logger.info("Tool call %s abandoned: %s", call.id, e)
                break
            invocation.result = result_for_model(result)
            invocation.is_error = not result.success
            self.persist_messages()

    def _is_live(self, turn: ChatTurn) -> bool:
        return any(t is turn for t in self.turns)

    def _build_request(self) -> ChatRequest:
        messages: list[ChatMessage] = []
        for t in self.turns:
            if t.agent_event is not None:
                continue
            if t.tool_calls:
                calls = tuple(ToolCall(id=c.id, name=c.name, arguments=dict(c.arguments)) for c in t.tool_calls)
                messages.append(ChatMessage(role=MessageRole.ASSISTANT, content=t.content, tool_calls=calls))
                # Every call needs an answer, including those a stop cut short.
                for c in t.tool_calls:
                    messages.append(
                        ChatMessage(
                            role=MessageRole.TOOL,
                            content=c.result if c.completed else "ERROR: Tool call did not run",
                            tool_call_id=c.id,
                            tool_name=c.name,
                            is_error=c.is_error or not c.completed,
                        )
                    )
            elif t.content.strip():
                messages.append(ChatMessage(role=MessageRole(t.role.value), content=t.content))
        tools = self.catalog.specs() if self.settings.native_tools_enabled else []
        return ChatRequest(messages=messages, system_prompt=self.system_prompt, tools=tools)

    def stop(self) -> None:
        logger.info("Stopping session %s", self._session_id)
        self.cancel.cancel()

    def reset_cancellation(self) -> None:
        self.cancel.reset()

    # Event turns

    def append_event_turn(self, event: AgentEvent) -> int:
        self.turns.append(ChatTurn(role=ChatRole.ASSISTANT, agent_event=event))
        index = len(self.turns) - 1
        self.persist_messages()
        self._notify_changed(index)
        return index

    def find_event_index(self, *, tool_call_id: str | None = None, approval_id: str | None = None) -> int | None:
        if tool_call_id is None and approval_id is None:
            raise ValueError("tool_call_id or approval_id is required")
        for i in range(len(self.turns) - 1, -1, -1):
            event = self.turns[i].agent_event
            if event is None:
                continue
            if tool_call_id is not None and event.tool_call_id == tool_call_id:
                return i
            if approval_id is not None and event.pending_approval_id == approval_id:
                return i
        return None

    def update_event(self, index: int, **changes: Any) -> None:
        if not 0 <= index < len(self.turns):
            raise SessionError(f"No turn at index {index}")
        turn = self.turns[index]
        event = turn.agent_event
        if event is None:
            raise SessionError(f"Turn {index} carries no agent event")
        unknown = set(changes) - set(AgentEvent.model_fields)
        if unknown:
            raise ValueError(f"Unknown agent event field(s): {', '.join(sorted(unknown))}")

        new_status = changes.get("tool_status")
        if new_status is not None and event.tool_status is not None and new_status != event.tool_status:
            validate_tool_transition(before=event.tool_status, after=ToolStatus(new_status))

        self.turns[index] = turn.model_copy(update={"agent_event": event.model_copy(update=changes)})
        self.persist_messages()
        self._notify_changed(index)

    def update_event_by_tool_call_id(self, tool_call_id: str, **changes: Any) -> bool:
        index = self.find_event_index(tool_call_id=tool_call_id)
        if index is None:
            return False
        self.update_event(index, **changes)
        return True

    def update_event_by_approval_id(self, approval_id: str, **changes: Any) -> bool:
        index = self.find_event_index(approval_id=approval_id)
        if index is None:
            return False
        self.update_event(index, **changes)
        return True

    def _on_approval_requested(self, event: SessionEvent) -> None:
        if event.session_id != self._session_id:
            return
        record = event.payload.get("approval")
        if not isinstance(record, PendingApproval):
            return

        if record.is_command:
            self.append_event_turn(
                AgentEvent(
                    kind=AgentEventKind.COMMAND_APPROVAL,
                    title="Awaiting command approval",
                    details=record.command,
                    command=record.command,
                    collapsed=False,
                    pending_approval_id=record.approval_id,
                    pending_tool_name="shell",
                    tool_call_id=record.tool_call_id,
                    tool_status=ToolStatus.PENDING,
                    event_category="command",
                )
            )
            return

        change = record.file_change
        if change is None:
            return
        if change.operation_type is FileOperationType.DELETE:
            title = "⚠️ Delete file?"
        else:
            title = f"Approve {change.operation_type.description.lower()}?"
        updates: dict[str, Any] = {
            "kind": AgentEventKind.FILE_CHANGE,
            "title": title,
            "details": change.file_path,
            "file_change": change,
            "pending_approval_id": record.approval_id,
            "pending_tool_name": record.tool_name,
            "collapsed": False,
        }
        index = self.find_event_index(tool_call_id=record.tool_call_id) if record.tool_call_id else None
        if index is not None:
            self.update_event(index, **updates)
        else:
            self.append_event_turn(AgentEvent(tool_call_id=record.tool_call_id, **updates))

    # Checkpoints

    def rollback_to_checkpoint(self, checkpoint: Checkpoint, *, remove_user_message: bool = False) -> RollbackResult:
        return self.ledger.rollback_to_checkpoint(checkpoint, remove_user_message=remove_user_message)

    async def branch_from_checkpoint(self, checkpoint: Checkpoint, new_prompt: str) -> str:
        self.ledger.branch_from_checkpoint(checkpoint)
        return await self.submit_user_message(new_prompt)

    async def apply_checkpoint_action(self, checkpoint: Checkpoint, action: CheckpointAction) -> RollbackResult:
        result = self.ledger.apply_action(checkpoint, action)
        if action.new_prompt:
            await self.submit_user_message(action.new_prompt)
        return result

    def file_change_history(self) -> list[DiffHistoryEntry]:
        return file_change_history(self.turns, self.ledger.checkpoints)

    def _on_history_reset(self) -> None:
        self.usage.clear()
        self.persist_messages()
        self._notify_changed(None)

    # Persistence

    def persist_messages(self) -> None:
        save_turns(self._store, self._session_id, self.turns)

    def load(self) -> None:
        loaded = load_turns(self._store, self._session_id)
        if loaded is not None:
            # In place: the ledger holds a reference to this list.
            self.turns[:] = loaded
        self.ledger.load()
        self._notify_changed(None)

    def close(self) -> None:
        self.ledger.finalize_current_checkpoint()
        self.persist_messages()
        self._unsubscribe()
