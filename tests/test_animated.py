# tests/test_animated.py
from __future__ import annotations

import io

import pytest
from rich.console import Console

from devpipe.ui.animated import (
    AnimatedRenderer,
    animation_lines,
    log_window_size,
    normalize_refresh_ms,
)
from devpipe.ui.progress import ProgressEntry, ProgressTracker
from devpipe.ui.renderer import Renderer, make_console

CURSOR_UP = "\x1b[1A"
SHOW_CURSOR = "\x1b[?25h"
HIDE_CURSOR = "\x1b[?25l"


def _console(height: int = 30) -> tuple[Console, io.StringIO]:
    out = io.StringIO()
    console = Console(file=out, force_terminal=True, width=80, height=height, color_system=None)
    return console, out


def _tracker() -> ProgressTracker:
    return ProgressTracker(
        [
            ProgressEntry(id="lint", type="check", phase=1, phase_name="Checks", estimated_seconds=5),
            ProgressEntry(id="test", type="test", phase=1, phase_name="Checks", estimated_seconds=20),
            ProgressEntry(id="build", type="build", phase=2, estimated_seconds=10, is_estimate_guess=True),
        ]
    )


@pytest.mark.parametrize(("given", "used"), [(5, 500), (20, 20), (100, 100), (2000, 2000), (2001, 500)])
def test_refresh_interval_is_clamped(given: int, used: int) -> None:
    assert normalize_refresh_ms(given) == used


def test_line_counts() -> None:
    assert animation_lines("basic", [2, 1], 3) == 6
    assert animation_lines("full", [2, 1], 3) == 2 + 5 + 4
    assert log_window_size(30, 4, 6) == 13
    assert log_window_size(10, 4, 6) == 3


def test_basic_budget_is_fixed_at_construction() -> None:
    console, _ = _console()
    tracker = _tracker()

    anim = AnimatedRenderer(console, tracker, mode="basic", header_lines=4)

    assert anim.anim_lines == 6
    assert anim.max_log_lines == 13
    assert anim.line_budget == 20
    assert tracker.max_log_lines == 13


def test_full_mode_groups_by_phase() -> None:
    console, _ = _console()

    anim = AnimatedRenderer(console, _tracker(), mode="full", group_by="phase", header_lines=4)

    assert anim.anim_lines == 2 + (3 + 2) + (3 + 1)
    rows = [r.plain for r in anim.build_rows(anim.tracker.snapshot())]
    assert rows[2].startswith("┌─ Checks ")
    assert any(r.startswith("┌─ Phase 2 ") for r in rows)


def test_unknown_group_by_falls_back_to_type() -> None:
    console, _ = _console()

    anim = AnimatedRenderer(console, _tracker(), mode="full", group_by="owner")

    assert anim.group_by == "type"
    assert anim.anim_lines == 2 + 3 * (3 + 1)


@pytest.mark.parametrize("mode", ["basic", "full"])
def test_rows_always_fill_the_budget(mode: str) -> None:
    console, _ = _console()
    tracker = _tracker()
    anim = AnimatedRenderer(console, tracker, mode=mode, header_lines=4)

    assert len(anim.build_rows(tracker.snapshot())) == anim.line_budget

    for i in range(50):
        tracker.add_log_line(f"line {i}")
    tracker.update("test", "RUNNING", 4.0)
    rows = anim.build_rows(tracker.snapshot())

    assert len(rows) == anim.line_budget
    assert rows[-1].plain == "line 49"


def test_every_redraw_rewinds_exactly_the_budget() -> None:
    console, out = _console()
    tracker = _tracker()
    anim = AnimatedRenderer(console, tracker, mode="basic", header_lines=4)

    anim.render()
    first = out.getvalue()
    assert HIDE_CURSOR in first
    assert CURSOR_UP not in first
    assert first.count("\n") == anim.line_budget

    tracker.update("lint", "RUNNING", 1.0)
    tracker.add_log_line("x" * 200)
    anim.render()
    anim.render()

    assert out.getvalue().count(CURSOR_UP) == 2 * anim.line_budget
    assert out.getvalue().count("\n") == 3 * anim.line_budget


def test_running_row_shows_estimate() -> None:
    console, _ = _console()
    tracker = _tracker()
    anim = AnimatedRenderer(console, tracker, mode="full", header_lines=4)
    tracker.update("build", "RUNNING", 65.0)

    rows = [r.plain for r in anim.build_rows(tracker.snapshot())]

    build = next(r for r in rows if "build" in r)
    assert "1m 5s / ~10s" in build
    assert build.rstrip().endswith("100%")


def test_stop_restores_cursor() -> None:
    console, out = _console()
    anim = AnimatedRenderer(console, _tracker(), mode="basic", refresh_ms=20)

    anim.start()
    anim.stop()

    assert out.getvalue().rfind(SHOW_CURSOR) > out.getvalue().rfind(HIDE_CURSOR)


def test_renderer_only_animates_on_a_terminal() -> None:
    renderer = Renderer(make_console(file=io.StringIO()), mode="full", animated=True)

    assert renderer.mode == "basic"
    assert renderer.animated is False
    assert renderer.start_animation(_tracker(), group_by="phase", refresh_ms=500, header_lines=0) is False
    assert renderer.tracker is not None


def test_renderer_routes_lines_to_tracker_while_animating() -> None:
    console, out = _console()
    renderer = Renderer(console, mode="basic", animated=True, verbose=True)
    tracker = _tracker()

    assert renderer.start_animation(tracker, group_by="phase", refresh_ms=2000, header_lines=0)
    renderer.verbose("hello")
    renderer.helper_hint("lint", "make fix")
    renderer.stop_animation()

    lines = tracker.snapshot().log_lines
    assert "[verbose        ] hello" in lines
    assert any("To fix run: make fix" in line for line in lines)
    assert SHOW_CURSOR in out.getvalue()
