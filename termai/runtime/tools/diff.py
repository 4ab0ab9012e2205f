from __future__ import annotations

import difflib


def _elide_tail(s: str, max_chars: int) -> str:
    if max_chars <= 0:
        return ""
    if len(s) <= max_chars:
        return s
    return s[: max(0, max_chars - 1)].rstrip() + "…"


def unified_diff(before: str | None, after: str | None, *, path: str) -> str:
    return "".join(
        difflib.unified_diff(
            (before or "").splitlines(keepends=True),
            (after or "").splitlines(keepends=True),
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
        )
    )


def diff_add_del_counts(unified_diff_text: str) -> tuple[int, int]:
    adds = 0
    dels = 0
    for line in unified_diff_text.splitlines():
        if line.startswith("+++ ") or line.startswith("--- "):
            continue
        if line.startswith("+"):
            adds += 1
        elif line.startswith("-"):
            dels += 1
    return adds, dels


def changed_lines_preview(unified_diff_text: str, *, max_lines: int = 12, max_line_chars: int = 180) -> list[str]:
    """
    Compact preview of changed lines with line numbers taken from the hunk headers.

    Only +/- lines are shown; a `⋮` separates hunks.
    """

    out: list[str] = []
    old_no: int | None = None
    new_no: int | None = None
    for line in unified_diff_text.splitlines():
        if line.startswith("--- ") or line.startswith("+++ "):
            continue
        if line.startswith("@@"):
            parsed = _parse_hunk_header(line)
            if parsed is not None and out and out[-1].strip() != "⋮":
                out.append(f"{'':>5}  ⋮")
            old_no, new_no = parsed if parsed is not None else (None, None)
            continue
        if old_no is None or new_no is None:
            continue
        if line.startswith(" "):
            old_no += 1
            new_no += 1
            continue
        if line.startswith("-"):
            out.append(f"{old_no:>5} {_elide_tail(line, max_line_chars)}")
            old_no += 1
        elif line.startswith("+"):
            out.append(f"{new_no:>5} {_elide_tail(line, max_line_chars)}")
            new_no += 1
        if len(out) >= max_lines:
            break
    return out


def _parse_hunk_header(header: str) -> tuple[int, int] | None:
    parts = header.split()
    try:
        old_part = next(p for p in parts if p.startswith("-"))
        new_part = next(p for p in parts if p.startswith("+"))
        return int(old_part[1:].split(",")[0]), int(new_part[1:].split(",")[0])
    except (StopIteration, ValueError):
        return None


def change_summary(before: str | None, after: str | None, *, path: str) -> str:
    adds, dels = diff_add_del_counts(unified_diff(before, after, path=path))
    return f"{path} (+{adds} -{dels})"
