"""
Free-text task entry and the pending task list of the open jar cycle.

Accepted input shapes (blank lines separate tasks):

    買い物: 牛乳を買う            -> title "買い物", detail "牛乳を買う"
    掃除 | 窓とベランダ           -> "|" works as a separator too

    レポート                       -> title "レポート"
      - 序論を書く                 -> indented / bulleted lines become the detail,
      - 図を直す                      joined by newlines

    今日は散歩した                 -> a block without any markers is one task:
    川沿いを三十分                    first line title, the rest detail
"""

from __future__ import annotations

import re
from typing import Any, Iterable, List, Optional, Tuple

from .models import PendingTask


_SEPARATOR_RE = re.compile(r"^(?P<title>[^:：|｜]*?)\s*[:：|｜]\s*(?P<detail>.*)$")
# "・" and "•" are often written without a following space
_BULLET_RE = re.compile(r"^(?:[-*+](?:\s+|$)|[•・]\s*|\d+[.)](?:\s+|$))")


def _is_continuation(line: str) -> bool:
    if line[:1].isspace():
        return True
    return _BULLET_RE.match(line) is not None


def _strip_bullet(line: str) -> str:
    stripped = line.strip()
    return _BULLET_RE.sub("", stripped, count=1).strip()


def _split_head(line: str) -> Tuple[str, Optional[str]]:
    """Split `title: detail`; a line without a usable separator is all title."""
    text = line.strip()
    m = _SEPARATOR_RE.match(text)
    if m and m.group("title").strip():
        return m.group("title").strip(), m.group("detail").strip() or None
    return text, None


def _has_separator(line: str) -> bool:
    m = _SEPARATOR_RE.match(line.strip())
    return bool(m and m.group("title").strip())


class _Draft:
    def __init__(self, title: str, detail: Optional[str] = None) -> None:
        self.title = title
        self.details: List[str] = [detail] if detail else []

    def build(self) -> Optional[PendingTask]:
        return PendingTask.normalize(self.title, "\n".join(self.details))


def _parse_block(lines: List[str]) -> List[PendingTask]:
    # No separators and no continuation lines: the paragraph is one task
    if not any(_is_continuation(l) or _has_separator(l) for l in lines):
        task = PendingTask.normalize(lines[0], "\n".join(l.strip() for l in lines[1:]))
        return [task] if task else []

    drafts: List[_Draft] = []
    for line in lines:
        if _is_continuation(line):
            text = _strip_bullet(line)
            if not text:
                continue
            if drafts:
                drafts[-1].details.append(text)
            else:
                drafts.append(_Draft(text))
            continue
        title, detail = _split_head(line)
        drafts.append(_Draft(title, detail))

    out: List[PendingTask] = []
    for draft in drafts:
        task = draft.build()
        if task is not None:
            out.append(task)
    return out


def _fallback(text: str) -> Optional[PendingTask]:
    lines = [l.strip() for l in text.strip().splitlines() if l.strip()]
    if not lines:
        return None
    return PendingTask.normalize(lines[0], "\n".join(lines[1:]))


def parse_tasks(text: Optional[str]) -> List[PendingTask]:
    """Parse free text into tasks. Pure and deterministic.

    If no task qualifies but the text is not blank, the whole text becomes a
    single task (first line title, rest detail) rather than being dropped.
    """
    if not text or not text.strip():
        return []

    tasks: List[PendingTask] = []
    block: List[str] = []
    for line in text.splitlines() + [""]:
        if line.strip():
            block.append(line.rstrip())
            continue
        if block:
            tasks.extend(_parse_block(block))
            block = []

    if not tasks:
        fallback = _fallback(text)
        if fallback is not None:
            tasks.append(fallback)
    return tasks


class TaskRegistry:
    """Ordered pending tasks for the current jar cycle only."""

    def __init__(self, tasks: Iterable[PendingTask] = ()) -> None:
        self._tasks: List[PendingTask] = list(tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def tasks(self) -> Tuple[PendingTask, ...]:
        return tuple(self._tasks)

    def register(self, title: Any, detail: Any = None) -> Optional[PendingTask]:
        """Normalize and append; returns None (and records nothing) for empty input."""
        if isinstance(title, PendingTask):
            title, detail = title.title, title.detail
        task = PendingTask.normalize(title, detail)
        if task is not None:
            self._tasks.append(task)
        return task

    def register_text(self, text: Optional[str]) -> List[PendingTask]:
        parsed = parse_tasks(text)
        self._tasks.extend(parsed)
        return parsed

    def replace(self, tasks: Iterable[PendingTask]) -> None:
        self._tasks = list(tasks)

    def drain(self) -> Tuple[PendingTask, ...]:
        """Return the accumulated tasks and start an empty list for the next cycle."""
        out = tuple(self._tasks)
        self._tasks = []
        return out


__all__ = ["TaskRegistry", "parse_tasks"]
