"""
Line commands understood by the interactive host.

    /add 12                 add coins (overflow rolls into the next jar)
    /coin                   one keyboard coin
    /record 60 30x1.5 [| 今日の成果]
                            slider values (optionally `value x weight`), optional title
    /task 買い物: 牛乳を買う  free-text task entry
    /title 週末の片付け       pending archive title (empty clears it)
    /capacity 150           jar capacity, persisted through settings
    /set dropInterval=120   any setting by its camelCase name
    /archives [page]        list sealed jars, newest first
    /status                 counters and totals
    /pull                   pull every resource now
    /log                    recent debug log lines
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from state.jar import AddResult
from state.record import SliderInput

if TYPE_CHECKING:
    from .runtime import JarRuntime


_ADD_RE = re.compile(r"^\s*/add\s+(\d{1,6})\s*$", re.IGNORECASE)
_COIN_RE = re.compile(r"^\s*/coin\s*$", re.IGNORECASE)
_RECORD_RE = re.compile(r"^\s*/record\s+(?P<sliders>[^|]*?)\s*(?:\|\s*(?P<title>.*?))?\s*$", re.IGNORECASE)
_SLIDER_RE = re.compile(r"^(-?\d+(?:\.\d+)?)(?:[x*](\d+(?:\.\d+)?))?$", re.IGNORECASE)
_TASK_RE = re.compile(r"^\s*/task\s+(.+)$", re.IGNORECASE | re.DOTALL)
_TITLE_RE = re.compile(r"^\s*/title(?:\s+(.*))?$", re.IGNORECASE)
_CAPACITY_RE = re.compile(r"^\s*/capacity\s+(\S+)\s*$", re.IGNORECASE)
_SET_RE = re.compile(r"^\s*/set\s+([A-Za-z_]+)\s*=\s*(\S+)\s*$", re.IGNORECASE)
_ARCHIVES_RE = re.compile(r"^\s*/archives(?:\s+(\d{1,4}))?\s*$", re.IGNORECASE)
_STATUS_RE = re.compile(r"^\s*/status\s*$", re.IGNORECASE)
_PULL_RE = re.compile(r"^\s*/pull\s*$", re.IGNORECASE)
_LOG_RE = re.compile(r"^\s*/log\s*$", re.IGNORECASE)


def _parse_sliders(text: str) -> Optional[List[SliderInput]]:
    sliders: List[SliderInput] = []
    for tok in text.split():
        m = _SLIDER_RE.match(tok)
        if not m:
            return None
        weight = float(m.group(2)) if m.group(2) else 1.0
        sliders.append(SliderInput(value=float(m.group(1)), weight=weight))
    return sliders or None


def _parse_record(text: str) -> Optional[Tuple[List[SliderInput], Optional[str]]]:
    m = _RECORD_RE.match(text or "")
    if not m:
        return None
    sliders = _parse_sliders(m.group("sliders"))
    if sliders is None:
        return None
    return sliders, (m.group("title") or None)


def _format_results(results: List[AddResult]) -> str:
    if not results:
        return "No coins added."
    added = sum(r.added for r in results)
    parts = [f"Added {added} coin(s)."]
    for r in results:
        if r.archive is not None:
            parts.append(f"Sealed 「{r.archive.title}」 ({r.archive.coins} coins).")
    leftover = results[-1].overflow if not results[-1].sealed else 0
    if leftover:
        parts.append(f"{leftover} coin(s) not accepted.")
    return " ".join(parts)


def _format_status(runtime: "JarRuntime") -> str:
    jar = runtime.jar
    title = jar.pending_title or "-"
    return (
        f"Jar {jar.coins}/{jar.capacity} | pending tasks {len(jar.pending_tasks)} | title {title} | "
        f"archives {len(runtime.archives)} | total coins {jar.total_coins()} | total tasks {jar.total_tasks()}"
    )


def _format_archives(runtime: "JarRuntime", index: int) -> str:
    page = runtime.archives.page(index)
    if not page.items:
        return "No archives yet."
    lines = [f"Archives page {page.index + 1}/{page.total_pages}:"]
    for a in page.items:
        lines.append(f"- {a.created_at:%Y-%m-%d %H:%M} {a.title} ({a.coins} coins, {len(a.tasks)} tasks)")
    return "\n".join(lines)


def _apply_setting(runtime: "JarRuntime", name: str, value: str) -> str:
    before = runtime.settings.get()
    after = runtime.settings.update({name: value})
    if after == before:
        return f"Unchanged: {name}"
    changed: Dict[str, object] = {
        k: v for k, v in after.to_wire().items() if before.to_wire().get(k) != v
    }
    return "✅ Settings updated: " + ", ".join(f"{k}={v}" for k, v in changed.items())


def handle_command(runtime: "JarRuntime", text: str) -> Optional[str]:
    """Apply one command line; returns the reply, or None for blank input."""
    if not text or not text.strip():
        return None

    m = _ADD_RE.match(text)
    if m:
        return _format_results(runtime.feed(int(m.group(1))))

    if _COIN_RE.match(text):
        return _format_results(runtime.drop_keyboard_coin())

    parsed = _parse_record(text)
    if parsed is not None:
        sliders, title = parsed
        return _format_results(runtime.record(sliders, title))

    m = _TASK_RE.match(text)
    if m:
        tasks = runtime.jar.register_task_text(m.group(1))
        if not tasks:
            return "No task recorded."
        return f"✅ Recorded {len(tasks)} task(s): " + ", ".join(t.title or "(untitled)" for t in tasks)

    m = _TITLE_RE.match(text)
    if m:
        runtime.jar.set_pending_title(m.group(1))
        return f"Pending title: {runtime.jar.pending_title or '-'}"

    m = _CAPACITY_RE.match(text)
    if m:
        return _apply_setting(runtime, "jarCapacity", m.group(1))

    m = _SET_RE.match(text)
    if m:
        return _apply_setting(runtime, m.group(1), m.group(2))

    m = _ARCHIVES_RE.match(text)
    if m:
        index = int(m.group(1)) - 1 if m.group(1) else 0
        return _format_archives(runtime, index)

    if _STATUS_RE.match(text):
        return _format_status(runtime)

    if _PULL_RE.match(text):
        if runtime.gateway.request_immediate_pull():
            return "Pull requested."
        return "Sync is disabled."

    if _LOG_RE.match(text):
        if runtime.debug_log is None:
            return "Debug log is not enabled."
        return "\n".join(runtime.debug_log.lines()[-20:]) or "Debug log is empty."

    return "Unknown command. Try /add, /coin, /record, /task, /title, /capacity, /set, /archives, /status, /pull, /log."


__all__ = ["handle_command"]
