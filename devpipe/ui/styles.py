from __future__ import annotations

from rich.text import Text

STATUS_STYLES = {
    "PASS": "green",
    "FAIL": "red",
    "SKIPPED": "yellow",
    "RUNNING": "bright_blue",
    "PENDING": "bright_black",
    "FIXING": "cyan",
    "RE-CHECKING": "cyan",
    "FIX FAILED": "red",
    "STILL FAILING": "red",
}

STATUS_SYMBOLS = {
    "PASS": "✓",
    "FAIL": "✗",
    "SKIPPED": "⊘",
    "RUNNING": "⚙",
    "PENDING": "⋯",
    "FIXING": "⚙",
    "RE-CHECKING": "⚙",
    "FIX FAILED": "✗",
    "STILL FAILING": "✗",
}


def status_style(status: str) -> str:
    return STATUS_STYLES.get(status, "")


def status_symbol(status: str) -> Text:
    return Text(STATUS_SYMBOLS.get(status, " "), style=status_style(status))


def status_text(status: str, label: str | None = None) -> Text:
    return Text(label if label is not None else status, style=status_style(status))


def progress_bar(fraction: float, width: int) -> Text:
    """Render ``fraction`` (0..1) as a block bar followed by a percentage."""
    if width <= 0:
        return Text()

    fraction = min(max(fraction, 0.0), 1.0)
    filled = min(int(fraction * width), width)
    bar = "█" * filled + "░" * (width - filled)

    if fraction >= 1.0:
        style = "green"
    elif fraction >= 0.5:
        style = "bright_blue"
    else:
        style = "bright_black"

    text = Text(bar, style=style)
    text.append(f" {fraction * 100:3.0f}%", style="green" if fraction >= 1.0 else "")
    return text
