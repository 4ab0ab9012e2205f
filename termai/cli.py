from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from collections.abc import Awaitable
from pathlib import Path
from typing import Any, TypeVar

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.history import FileHistory

from . import __version__
from .runtime.approval import ApprovalDecision, PendingApproval
from .runtime.checkpoints import CheckpointError, CheckpointLedger, checkpoints_blob_name
from .runtime.event_bus import EventBus, SessionEvent, SessionEventKind
from .runtime.history import file_change_history
from .runtime.ids import new_id
from .runtime.llm.errors import CancellationToken, ModelConfigError
from .runtime.llm.types import ModelProfile
from .runtime.models import ChatRole, ChatTurn, Checkpoint, ToolStatus
from .runtime.notifications import BellNotifier, NullNotifier
from .runtime.session import ChatSession, SessionError, load_turns, save_turns
from .runtime.settings import AgentSettings, load_settings
from .runtime.stores import BlobStoreError, FileBlobStore
from .runtime.terminal import LocalTerminalRunner
from .runtime.tools import DeleteFileTool, WriteFileTool
from .runtime.tools.diff import change_summary, changed_lines_preview, unified_diff

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 5

_SLASH_COMMANDS = [
    "/run",
    "/write",
    "/delete",
    "/checkpoints",
    "/rollback",
    "/branch",
    "/history",
    "/usage",
    "/stop",
    "/help",
    "/exit",
]

_HELP = """\
/run <cmd>               run a shell command
/write <path>            write a file (content is prompted next)
/delete <path>           delete a file (always asks for approval)
/checkpoints             list checkpoints of this session
/rollback <n>            restore files and history to checkpoint n
/branch <n> <prompt>     drop history from checkpoint n and continue with a new prompt
/history                 list completed file changes
/usage                   token usage so far
/stop                    stop the running response
/exit                    leave"""

T = TypeVar("T")


def _default_state_dir() -> Path:
    return Path(os.environ.get("TERMAI_STATE_DIR") or "~/.termai").expanduser()


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="termai", description="Terminal coding agent with approvals and checkpoints.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--state-dir",
        dest="state_dir",
        type=Path,
        default=None,
        help="Where sessions and checkpoints are stored (default: ~/.termai).",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for stderr output (default: WARNING).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    chat_parser = subparsers.add_parser("chat", help="Start an interactive session.")
    chat_parser.add_argument("--profile", dest="profile_path", type=Path, default=None, help="Model profile JSON file.")
    chat_parser.add_argument(
        "--provider",
        dest="provider",
        default="local",
        choices=["local", "openai", "anthropic", "google"],
        help="Provider when no profile file is given (default: local).",
    )
    chat_parser.add_argument("--model", dest="model", default=None, help="Model name.")
    chat_parser.add_argument("--base-url", dest="base_url", default=None, help="Override the provider base URL.")
    chat_parser.add_argument("--settings", dest="settings_path", type=Path, default=None, help="Agent settings JSON file.")
    chat_parser.add_argument("--session", dest="session_id", default=None, help="Resume an existing session by ID.")
    chat_parser.add_argument("--system", dest="system_prompt", default="", help="Optional system prompt.")
    chat_parser.set_defaults(func=_cmd_chat)

    cp_parser = subparsers.add_parser("checkpoints", help="List persisted checkpoints of a session.")
    cp_parser.add_argument("session_id", help="Session ID.")
    cp_parser.set_defaults(func=_cmd_checkpoints)

    rb_parser = subparsers.add_parser("rollback", help="Restore files and history of a session to a checkpoint.")
    rb_parser.add_argument("session_id", help="Session ID.")
    rb_parser.add_argument("number", help="Checkpoint number as listed by `termai checkpoints`.")
    rb_parser.add_argument("--edit", action="store_true", help="Also remove the checkpoint's own user message.")
    rb_parser.add_argument("--yes", action="store_true", help="Apply the rollback instead of only showing the preview.")
    rb_parser.set_defaults(func=_cmd_rollback)

    hist_parser = subparsers.add_parser("history", help="List the completed file changes of a session.")
    hist_parser.add_argument("session_id", help="Session ID.")
    hist_parser.add_argument("--diff", action="store_true", help="Print the unified diff of each change.")
    hist_parser.set_defaults(func=_cmd_history)

    return parser


def _load_profile(args: argparse.Namespace) -> ModelProfile:
    if args.profile_path is not None:
        try:
            raw = json.loads(Path(args.profile_path).expanduser().read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ModelConfigError(f"Cannot read profile {str(args.profile_path)!r}: {e}") from e
        return ModelProfile.from_dict(raw)
    if not args.model:
        raise ModelConfigError("Either --profile or --model is required.")
    return ModelProfile.from_dict({"provider_kind": args.provider, "model": args.model, "base_url": args.base_url})


def _format_checkpoint(n: int, cp: Checkpoint) -> str:
    return f"[{n}] #{cp.message_index} {cp.message_preview!r} ({cp.short_description})"


def _cmd_checkpoints(args: argparse.Namespace) -> int:
    store = FileBlobStore(args.state_dir or _default_state_dir())
    try:
        raw = store.load_blob(checkpoints_blob_name(args.session_id))
    except BlobStoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    items = raw.get("checkpoints", []) if isinstance(raw, dict) else []
    if not items:
        print("No checkpoints.")
        return EXIT_OK
    for n, item in enumerate(items, start=1):
        print(_format_checkpoint(n, Checkpoint.model_validate(item)))
    return EXIT_OK


def _open_ledger(store: FileBlobStore, session_id: str) -> tuple[list[ChatTurn], CheckpointLedger]:
    turns = load_turns(store, session_id) or []
    ledger = CheckpointLedger(session_id=session_id, turns=turns, store=store, cancel=CancellationToken())
    ledger.load()
    return turns, ledger


def _pick_checkpoint(checkpoints: list[Checkpoint], raw: str) -> Checkpoint:
    try:
        n = int(raw)
    except ValueError as e:
        raise ValueError(f"Not a checkpoint number: {raw!r}") from e
    if not 1 <= n <= len(checkpoints):
        raise ValueError(f"No checkpoint {n} (have {len(checkpoints)}).")
    return checkpoints[n - 1]


def _cmd_rollback(args: argparse.Namespace) -> int:
    store = FileBlobStore(args.state_dir or _default_state_dir())
    try:
        turns, ledger = _open_ledger(store, args.session_id)
        cp = _pick_checkpoint(ledger.checkpoints, args.number)
    except (SessionError, CheckpointError, BlobStoreError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    files, commands, to_remove = ledger.rollback_preview(cp)
    if args.edit:
        to_remove += 1
    print(f"Will restore {len(files)} file(s) and remove {to_remove} message(s).")
    for snapshot in files:
        print(f"    {'delete' if snapshot.was_created else 'restore'} {snapshot.path}")
    if commands:
        print("Shell commands cannot be undone:")
        for c in commands:
            print(f"    $ {c}")
    if not args.yes:
        print("Re-run with --yes to apply.")
        return EXIT_OK

    try:
        result = ledger.rollback_to_checkpoint(cp, remove_user_message=args.edit)
        save_turns(store, args.session_id, turns)
    except BlobStoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    print(result.summary)
    for path, reason in result.failed_files:
        print(f"  ✗ {path}: {reason}", file=sys.stderr)
    return EXIT_OK if result.success else EXIT_ERROR


def _cmd_history(args: argparse.Namespace) -> int:
    store = FileBlobStore(args.state_dir or _default_state_dir())
    try:
        turns, ledger = _open_ledger(store, args.session_id)
    except (SessionError, CheckpointError, BlobStoreError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    entries = file_change_history(turns, ledger.checkpoints)
    if not entries:
        print("No file changes.")
        return EXIT_OK
    for entry in entries:
        fc = entry.file_change
        line = f"{entry.sequence_number + 1}. {fc.operation_type.description}: {fc.file_path}"
        if args.diff:
            print(line)
            print(unified_diff(fc.before_content, fc.after_content, path=fc.file_name).rstrip())
        else:
            print(f"{line} ({change_summary(fc.before_content, fc.after_content, path=fc.file_name)})")
    return EXIT_OK


def _cmd_chat(args: argparse.Namespace) -> int:
    try:
        profile = _load_profile(args)
        settings = load_settings(args.settings_path.expanduser() if args.settings_path else None)
    except (ModelConfigError, ValueError) as e:
        print(f"Config error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    store = FileBlobStore(args.state_dir or _default_state_dir())
    session_id = args.session_id or new_id("sess")
    try:
        return asyncio.run(_chat_loop(profile=profile, settings=settings, store=store, session_id=session_id, args=args))
    except (SessionError, CheckpointError, BlobStoreError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


class _TurnPrinter:
    """Prints streamed assistant text incrementally and tool events once per status."""

    def __init__(self, session: ChatSession) -> None:
        self._session = session
        self._printed_chars: dict[str, int] = {}
        self._printed_status: dict[str, str] = {}

    def __call__(self, index: int | None) -> None:
        if index is None or index >= len(self._session.turns):
            self._printed_chars.clear()
            self._printed_status.clear()
            return
        turn = self._session.turns[index]
        if turn.role is ChatRole.USER:
            return
        event = turn.agent_event
        if event is None:
            done = self._printed_chars.get(turn.id, 0)
            if len(turn.content) > done:
                sys.stdout.write(turn.content[done:])
                sys.stdout.flush()
                self._printed_chars[turn.id] = len(turn.content)
            return
        if event.awaiting_approval:
            return
        status = f"{event.kind}:{event.title}:{event.tool_status}"
        if self._printed_status.get(turn.id) == status:
            return
        self._printed_status[turn.id] = status
        line = f"  • {event.title}"
        if event.details:
            line += f": {event.details}"
        print(line)
        if event.output and event.tool_status in {ToolStatus.SUCCEEDED, ToolStatus.FAILED}:
            print("\n".join(f"    {ln}" for ln in event.output.rstrip().splitlines()[:40]))


async def _ask_approval(record: PendingApproval, prompt: PromptSession) -> ApprovalDecision:
    if record.is_command:
        print(f"\n⚠️  Command approval: {record.command}")
        answer = (await prompt.prompt_async("Run it? [y]es / [n]o / [e]dit: ")).strip().lower()
        if answer.startswith("e"):
            edited = await prompt.prompt_async("Command: ", default=record.command or "")
            return ApprovalDecision(approval_id=record.approval_id, approved=True, edited_command=edited)
        return ApprovalDecision(approval_id=record.approval_id, approved=answer.startswith("y"))

    change = record.file_change
    assert change is not None
    print(f"\n⚠️  {change.operation_type.description}: {change.file_path}")
    preview = changed_lines_preview(unified_diff(change.before_content, change.after_content, path=change.file_name))
    for line in preview:
        print(f"    {line}")
    answer = (await prompt.prompt_async("Apply? [y]es / [n]o / [e]dit content: ")).strip().lower()
    if answer.startswith("e") and change.after_content is not None:
        edited = await prompt.prompt_async("Content (Esc+Enter to finish):\n", default=change.after_content, multiline=True)
        return ApprovalDecision(approval_id=record.approval_id, approved=True, partial=True, modified_content=edited)
    return ApprovalDecision(approval_id=record.approval_id, approved=answer.startswith("y"))


async def _run_with_approvals(
    work: Awaitable[T],
    *,
    session: ChatSession,
    approvals: asyncio.Queue[PendingApproval],
    prompt: PromptSession,
) -> T:
    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(work)
    try:
        loop.add_signal_handler(signal.SIGINT, session.stop)
        has_signal_handler = True
    except (NotImplementedError, RuntimeError):
        has_signal_handler = False
    try:
        while not task.done():
            getter = asyncio.ensure_future(approvals.get())
            done, _ = await asyncio.wait({task, getter}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                decision = await _ask_approval(getter.result(), prompt)
                session.gate.resolve(decision)
            else:
                getter.cancel()
        return task.result()
    finally:
        if has_signal_handler:
            loop.remove_signal_handler(signal.SIGINT)


async def _chat_loop(
    *,
    profile: ModelProfile,
    settings: AgentSettings,
    store: FileBlobStore,
    session_id: str,
    args: argparse.Namespace,
) -> int:
    bus = EventBus()
    notifier = BellNotifier() if settings.notify_on_approval else NullNotifier()
    session = ChatSession(
        session_id=session_id,
        profile=profile,
        settings=settings,
        store=store,
        bus=bus,
        working_dir=Path.cwd(),
        system_prompt=args.system_prompt,
        notifier=notifier,
    )
    if args.session_id:
        session.load()
    runner = LocalTerminalRunner(bridge=session.terminal, bus=bus)

    approvals: asyncio.Queue[PendingApproval] = asyncio.Queue()

    def _on_approval(event: SessionEvent) -> None:
        record = event.payload.get("approval")
        if event.session_id == session_id and isinstance(record, PendingApproval):
            approvals.put_nowait(record)

    unsubscribe = bus.subscribe(_on_approval, kinds={SessionEventKind.APPROVAL_REQUESTED})
    session.add_observer(_TurnPrinter(session))

    history_path = store.root / "history.txt"
    history_path.parent.mkdir(parents=True, exist_ok=True)
    prompt: PromptSession[str] = PromptSession(
        completer=WordCompleter(_SLASH_COMMANDS, sentence=True),
        history=FileHistory(str(history_path)),
    )

    print(f"termai {__version__}, session {session_id} ({profile.provider_kind.display_name}/{profile.model_name})")
    print("Type /help for commands.")

    async def _run(work: Awaitable[T]) -> T:
        return await _run_with_approvals(work, session=session, approvals=approvals, prompt=prompt)

    try:
        while True:
            try:
                line = (await prompt.prompt_async("You> ")).strip()
            except (EOFError, KeyboardInterrupt):
                break
            if not line:
                continue
            cmd, _, rest = line.partition(" ")
            rest = rest.strip()
            try:
                if cmd in {"/exit", "/quit"}:
                    break
                if cmd == "/help":
                    print(_HELP)
                elif cmd == "/stop":
                    session.stop()
                elif cmd == "/run":
                    result = await _run(session.pipeline.execute_shell_command(rest, session.working_dir))
                    if not result.success:
                        print(f"  ✗ {result.error}")
                elif cmd == "/write":
                    content = await prompt.prompt_async("Content (Esc+Enter to finish):\n", multiline=True)
                    result = await _run(
                        session.pipeline.execute(WriteFileTool(), {"path": rest, "content": content}, session.working_dir)
                    )
                    print(f"  {'✓' if result.success else '✗'} {result.message.splitlines()[0] if result.message else ''}")
                elif cmd == "/delete":
                    result = await _run(session.pipeline.execute(DeleteFileTool(), {"path": rest}, session.working_dir))
                    print(f"  {'✓' if result.success else '✗'} {result.message}")
                elif cmd == "/checkpoints":
                    checkpoints = session.ledger.checkpoints
                    if not checkpoints:
                        print("No checkpoints.")
                    for n, cp in enumerate(checkpoints, start=1):
                        print(_format_checkpoint(n, cp))
                elif cmd == "/rollback":
                    cp = _pick_checkpoint(session.ledger.checkpoints, rest)
                    files, commands, to_remove = session.ledger.rollback_preview(cp)
                    print(f"Will restore {len(files)} file(s) and remove {to_remove} message(s).")
                    if commands:
                        print("Shell commands cannot be undone:")
                        for c in commands:
                            print(f"    $ {c}")
                    if (await prompt.prompt_async("Proceed? [y/N]: ")).strip().lower().startswith("y"):
                        print(session.rollback_to_checkpoint(cp).summary)
                elif cmd == "/branch":
                    number, _, new_prompt = rest.partition(" ")
                    if not new_prompt.strip():
                        raise ValueError("Usage: /branch <n> <prompt>")
                    cp = _pick_checkpoint(session.ledger.checkpoints, number)
                    await _run(session.branch_from_checkpoint(cp, new_prompt))
                    print()
                elif cmd == "/history":
                    entries = session.file_change_history()
                    if not entries:
                        print("No file changes.")
                    for entry in entries:
                        fc = entry.file_change
                        print(f"  {entry.sequence_number + 1}. {fc.operation_type.description}: {fc.file_path}")
                elif cmd == "/usage":
                    for (provider, model), totals in session.usage.totals().items():
                        est = f" ({totals.estimated_requests} estimated)" if totals.estimated_requests else ""
                        print(f"  {provider}/{model}: {totals.total_tokens} tokens in {totals.requests} request(s){est}")
                elif cmd.startswith("/"):
                    print(f"Unknown command: {cmd}. Type /help.")
                else:
                    await _run(session.submit_user_message(line))
                    print()
            except ValueError as e:
                print(f"  {e}")
    finally:
        unsubscribe()
        runner.close()
        session.close()
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    try:
        func: Any = getattr(args, "func")
        return int(func(args))
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
