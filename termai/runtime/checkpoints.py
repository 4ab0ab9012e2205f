from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from pydantic import ValidationError

from .llm.errors import CancellationToken
from .models import (
    ChatTurn,
    Checkpoint,
    CheckpointAction,
    CheckpointActionKind,
    FileSnapshot,
    RollbackResult,
)
from .stores import BlobStore

logger = logging.getLogger(__name__)


class CheckpointError(RuntimeError):
    pass


def checkpoints_blob_name(session_id: str) -> str:
    return f"checkpoints-{session_id}"


class CheckpointLedger:
    """
    Per-session record of what each user turn changed on disk.

    A checkpoint opens when a user message is appended and stays active until the next
    one (or session close). Only the first snapshot of a path inside a checkpoint is
    kept, so `content_before` always reflects the state before the turn started.
    Finalized checkpoints without changes are discarded.

    The ledger shares the session's turn list and truncates it in place on rollback
    and branch; `on_history_reset` lets the session refresh everything derived from it.
    """

    def __init__(
        self,
        *,
        session_id: str,
        turns: list[ChatTurn],
        store: BlobStore,
        cancel: CancellationToken,
        on_history_reset: Callable[[], None] | None = None,
    ) -> None:
        self._session_id = session_id
        self._turns = turns
        self._store = store
        self._cancel = cancel
        self._on_history_reset = on_history_reset
        self._checkpoints: list[Checkpoint] = []
        self._current: Checkpoint | None = None

    @property
    def checkpoints(self) -> list[Checkpoint]:
        return list(self._checkpoints)

    @property
    def current_checkpoint(self) -> Checkpoint | None:
        return self._current

    # Recording

    def create_checkpoint(self, message_preview: str) -> Checkpoint:
        if not self._turns:
            raise CheckpointError("Cannot create a checkpoint before any message exists.")
        self.finalize_current_checkpoint()
        checkpoint = Checkpoint.anchored_at(len(self._turns) - 1, message_preview)
        self._current = checkpoint
        logger.debug("Created checkpoint at message index %d", checkpoint.message_index)
        return checkpoint

    def record_file_change(self, path: str, *, content_before: str | None, was_created: bool) -> bool:
        """Capture the pre-mutation state of `path`. Call before the file is touched."""

        if self._current is None:
            logger.warning("No active checkpoint; file change not recorded for %s", path)
            return False
        snapshot = FileSnapshot(path=path, content_before=content_before, was_created=was_created)
        recorded = self._current.record_snapshot(snapshot)
        if recorded:
            logger.debug("Recorded file change: %s (created: %s)", path, was_created)
        else:
            logger.debug("File already recorded in checkpoint: %s", path)
        return recorded

    def record_shell_command(self, command: str) -> bool:
        if self._current is None:
            logger.warning("No active checkpoint; shell command not recorded")
            return False
        self._current.shell_commands_run.append(command)
        return True

    def finalize_current_checkpoint(self) -> Checkpoint | None:
        checkpoint = self._current
        if checkpoint is None:
            return None
        self._current = None
        if not checkpoint.has_changes:
            logger.debug("Discarding empty checkpoint at message index %d", checkpoint.message_index)
            return None
        self._checkpoints.append(checkpoint)
        self.persist()
        logger.info(
            "Finalized checkpoint with %d file(s) and %d command(s)",
            checkpoint.modified_file_count,
            len(checkpoint.shell_commands_run),
        )
        return checkpoint

    # Queries

    def checkpoint_for_message_index(self, index: int) -> Checkpoint | None:
        for cp in self._checkpoints:
            if cp.message_index == index:
                return cp
        if self._current is not None and self._current.message_index == index:
            return self._current
        return None

    def changes_since_checkpoint(self, checkpoint: Checkpoint) -> tuple[dict[str, FileSnapshot], list[str]]:
        files: dict[str, FileSnapshot] = dict(checkpoint.file_snapshots)
        commands: list[str] = list(checkpoint.shell_commands_run)

        later = [cp for cp in self._checkpoints if cp.message_index > checkpoint.message_index]
        if self._current is not None and self._current.message_index > checkpoint.message_index:
            later.append(self._current)
        for cp in sorted(later, key=lambda c: c.message_index):
            for path, snapshot in cp.file_snapshots.items():
                # Earliest snapshot per path wins.
                files.setdefault(path, snapshot)
            commands.extend(cp.shell_commands_run)
        return files, commands

    def rollback_preview(self, checkpoint: Checkpoint) -> tuple[list[FileSnapshot], list[str], int]:
        files, commands = self.changes_since_checkpoint(checkpoint)
        to_remove = len(self._turns) - (checkpoint.message_index + 1)
        return [files[p] for p in sorted(files)], commands, max(0, to_remove)

    # Rewinding

    def rollback_to_checkpoint(self, checkpoint: Checkpoint, *, remove_user_message: bool = False) -> RollbackResult:
        self._cancel.cancel()

        files, commands = self.changes_since_checkpoint(checkpoint)
        restored: list[str] = []
        failed: list[tuple[str, str]] = []
        for path in sorted(files):
            snapshot = files[path]
            if not snapshot.was_created and snapshot.content_before is None:
                logger.warning("No captured content to restore for %s", path)
                failed.append((path, "Original content was not captured"))
                continue
            try:
                if _restore_snapshot(snapshot):
                    restored.append(path)
            except OSError as e:
                logger.warning("Failed to restore %s: %s", path, e)
                failed.append((path, str(e)))

        target = checkpoint.message_index if remove_user_message else checkpoint.message_index + 1
        removed = self._truncate_and_drop(checkpoint, target)

        result = RollbackResult(
            success=not failed,
            restored_files=restored,
            failed_files=failed,
            messages_removed=removed,
            shell_commands_warning=commands,
        )
        logger.info("Rollback completed: %s", result.summary)
        return result

    def branch_from_checkpoint(self, checkpoint: Checkpoint) -> int:
        """Drop history from the checkpoint's user message onward, leaving files as they are."""

        self._cancel.cancel()
        removed = self._truncate_and_drop(checkpoint, checkpoint.message_index)
        logger.info("Branched from checkpoint at message %d", checkpoint.message_index)
        return removed

    def apply_action(self, checkpoint: Checkpoint, action: CheckpointAction) -> RollbackResult:
        if action.kind is CheckpointActionKind.ROLLBACK:
            return self.rollback_to_checkpoint(checkpoint)
        if action.kind is CheckpointActionKind.EDIT_AND_ROLLBACK:
            return self.rollback_to_checkpoint(checkpoint, remove_user_message=True)
        removed = self.branch_from_checkpoint(checkpoint)
        return RollbackResult(success=True, messages_removed=removed)

    def clear_checkpoints(self) -> None:
        self._checkpoints.clear()
        self._current = None
        self.persist()

    def _truncate_and_drop(self, checkpoint: Checkpoint, target_count: int) -> int:
        removed = max(0, len(self._turns) - target_count)
        if removed:
            del self._turns[target_count:]
        self._checkpoints = [cp for cp in self._checkpoints if cp.message_index < checkpoint.message_index]
        self._current = None
        self.persist()
        if self._on_history_reset is not None:
            self._on_history_reset()
        return removed

    # Persistence

    def persist(self) -> None:
        self._store.save_blob(
            checkpoints_blob_name(self._session_id),
            {"checkpoints": [cp.model_dump(mode="json") for cp in self._checkpoints]},
        )

    def load(self) -> int:
        raw = self._store.load_blob(checkpoints_blob_name(self._session_id))
        if raw is None:
            return 0
        items = raw.get("checkpoints") if isinstance(raw, dict) else None
        if not isinstance(items, list):
            raise CheckpointError(f"Invalid checkpoint blob for session {self._session_id!r}.")
        try:
            self._checkpoints = [Checkpoint.model_validate(item) for item in items]
        except ValidationError as e:
            raise CheckpointError(f"Invalid checkpoint data for session {self._session_id!r}: {e}") from e
        logger.debug("Loaded %d checkpoint(s)", len(self._checkpoints))
        return len(self._checkpoints)


def _restore_snapshot(snapshot: FileSnapshot) -> bool:
    path = Path(snapshot.path)
    if snapshot.was_created:
        if path.exists():
            path.unlink()
            return True
        return False
    assert snapshot.content_before is not None
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(snapshot.content_before, encoding="utf-8")
    return True
