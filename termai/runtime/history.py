from __future__ import annotations

from collections.abc import Sequence

from .models import AgentEventKind, ChatTurn, Checkpoint, DiffHistoryEntry, FileChange


def file_change_history(turns: Sequence[ChatTurn], checkpoints: Sequence[Checkpoint]) -> list[DiffHistoryEntry]:
    """Completed file changes in conversation order; pending approvals are excluded."""

    entries: list[DiffHistoryEntry] = []
    for turn in turns:
        event = turn.agent_event
        if event is None or event.file_change is None:
            continue
        completed = event.kind == AgentEventKind.STATUS or (
            event.kind == AgentEventKind.FILE_CHANGE and event.pending_approval_id is None
        )
        if not completed:
            continue
        path = event.file_change.file_path
        checkpoint_id = next((cp.id for cp in checkpoints if path in cp.file_snapshots), None)
        entries.append(
            DiffHistoryEntry(file_change=event.file_change, checkpoint_id=checkpoint_id, sequence_number=len(entries))
        )
    return entries


def history_index(history: Sequence[DiffHistoryEntry], change: FileChange) -> int | None:
    for i, entry in enumerate(history):
        if entry.file_change.id == change.id:
            return i
    return None


def previous_file_change(history: Sequence[DiffHistoryEntry], current: FileChange) -> FileChange | None:
    idx = history_index(history, current)
    if idx is None or idx == 0:
        return None
    return history[idx - 1].file_change


def next_file_change(history: Sequence[DiffHistoryEntry], current: FileChange) -> FileChange | None:
    idx = history_index(history, current)
    if idx is None or idx >= len(history) - 1:
        return None
    return history[idx + 1].file_change
