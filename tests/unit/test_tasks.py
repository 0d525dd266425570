from __future__ import annotations

from state.models import PendingTask
from state.tasks import TaskRegistry, parse_tasks


def test_separator_line_then_plain_block():
    tasks = parse_tasks("買い物: 牛乳を買う\n\n次のタスク")
    assert tasks == [
        PendingTask(title="買い物", detail="牛乳を買う"),
        PendingTask(title="次のタスク", detail=None),
    ]


def test_full_width_colon_and_pipe_separators():
    tasks = parse_tasks("掃除：窓とベランダ\n洗濯 | シーツ")
    assert tasks == [
        PendingTask(title="掃除", detail="窓とベランダ"),
        PendingTask(title="洗濯", detail="シーツ"),
    ]


def test_only_first_separator_splits():
    assert parse_tasks("会議: 10:30 から") == [PendingTask(title="会議", detail="10:30 から")]


def test_bulleted_and_indented_lines_continue_detail():
    text = "レポート\n  - 序論を書く\n  - 図を直す\n・参考文献\n\n運動: 走る\n    5km"
    tasks = parse_tasks(text)
    assert tasks == [
        PendingTask(title="レポート", detail="序論を書く\n図を直す\n参考文献"),
        PendingTask(title="運動", detail="走る\n5km"),
    ]


def test_numbered_continuation_without_head_starts_a_task():
    assert parse_tasks("1. 牛乳\n2) 卵") == [PendingTask(title="牛乳", detail="卵")]


def test_block_without_markers_is_one_task():
    tasks = parse_tasks("今日は散歩した\n川沿いを三十分\n気持ちよかった")
    assert tasks == [PendingTask(title="今日は散歩した", detail="川沿いを三十分\n気持ちよかった")]


def test_empty_separator_title_is_plain_text():
    assert parse_tasks(": メモ") == [PendingTask(title=": メモ", detail=None)]


def test_fallback_when_nothing_qualifies():
    assert parse_tasks("-\n*") == [PendingTask(title="-", detail="*")]


def test_blank_input_yields_nothing():
    assert parse_tasks("") == []
    assert parse_tasks("  \n\n ") == []
    assert parse_tasks(None) == []


def test_parsing_is_deterministic():
    text = "A: 1\n  - 2\n\nB"
    assert parse_tasks(text) == parse_tasks(text)


def test_registry_register_and_drain():
    reg = TaskRegistry()
    assert reg.register("  ", None) is None
    assert reg.register("買い物", " 牛乳 ") == PendingTask(title="買い物", detail="牛乳")
    reg.register_text("次のタスク\n\n掃除: 窓")
    assert len(reg) == 3

    drained = reg.drain()

    assert [t.title for t in drained] == ["買い物", "次のタスク", "掃除"]
    assert len(reg) == 0
    assert reg.tasks == ()
