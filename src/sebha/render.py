"""
Terminal Render Module

Rich renderables for the terminal host:
- counters table (selected marker, favorite star, counts, completion)
- session panel with the tally, target and a progress bar
- stats table (today / week / month / lifetime)
- transcript line with the credited phrase matches highlighted

Arabic text is passed through as-is; bidi shaping is left to the terminal.
"""

from rich.console import Group
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from .matching import match_spans
from .normalize import tokenize
from .sebha_typing import CounterCollection, CountStats, SessionSnapshot, SessionState


STATE_STYLES = {
    SessionState.IDLE: ("Idle", "grey50"),
    SessionState.LISTENING: ("Listening", "green"),
    SessionState.TARGET_REACHED: ("Target reached", "bold yellow"),
}


def completion(count: int, target: int) -> float:
    return min(count / target, 1.0) if target > 0 else 0.0


def render_counters(collection: CounterCollection) -> Table:
    table = Table(title="My Sebhas", show_lines=False)
    table.add_column("#", justify="right", style="cyan")
    table.add_column("", width=2)
    table.add_column("Sebha", style="bold")
    table.add_column("Count", justify="right")
    table.add_column("Target", justify="right")
    table.add_column("Done", justify="right")

    for idx, counter in enumerate(collection.counters):
        marker = "▶" if idx == collection.selected_index else ""
        star = "★" if counter.is_favorite else ""
        table.add_row(
            str(idx),
            marker + star,
            counter.phrase,
            str(counter.count),
            str(counter.target) if counter.target > 0 else "–",
            f"{int(completion(counter.count, counter.target) * 100)}%",
        )
    return table


LEVEL_CELLS = 20


def render_audio_level(level: float) -> Text:
    """
    Render microphone level indicator bar.

    Args:
        level: Audio level (0.0 to 1.0)

    Returns:
        One-line meter, e.g. "Mic ▮▮▮▮▯▯▯▯"
    """
    filled = min(LEVEL_CELLS, max(0, round(level * LEVEL_CELLS)))
    meter = Text("Mic ", style="grey62")
    meter.append("▮" * filled, style="green")
    meter.append("▯" * (LEVEL_CELLS - filled), style="grey35")
    return meter


def render_session(snapshot: SessionSnapshot) -> Panel:
    label, style = STATE_STYLES[snapshot.state]
    if snapshot.is_dictating:
        label, style = "Dictating", "magenta"

    if snapshot.selected_index < 0:
        body = Text("No sebhas. Add one with: add <target> <text>", style="italic")
        return Panel(body, title=Text(label, style=style))

    header = Text(snapshot.phrase, style="bold", justify="center")
    tally = Text(justify="center")
    tally.append(str(snapshot.session_tally), style="bold cyan")
    if snapshot.target > 0:
        tally.append(f" / {snapshot.target}")
    tally.append(f"    Total: {snapshot.lifetime_count}", style="grey62")

    parts = [header, tally]
    if snapshot.target > 0:
        parts.append(ProgressBar(total=1.0, completed=snapshot.progress))
        parts.append(Text(f"Progress {int(snapshot.progress * 100)}%", justify="right", style="grey62"))
    if snapshot.is_listening or snapshot.is_dictating:
        parts.append(render_audio_level(snapshot.input_level))
    return Panel(Group(*parts), title=Text(label, style=style), subtitle=f"#{snapshot.selected_index}")


def render_stats(stats: CountStats) -> Table:
    table = Table(title="Stats", show_header=False)
    table.add_column("Period")
    table.add_column("Count", justify="right", style="bold")
    table.add_row("Today", str(stats.today))
    table.add_row("This week", str(stats.this_week))
    table.add_row("This month", str(stats.this_month))
    table.add_row("Total", str(stats.total))
    table.add_row("Average per sebha", str(stats.average_per_counter))
    return table


def render_transcript(transcript: str, phrase: str) -> Text:
    """Transcript words, with every credited phrase occurrence in green."""
    words = transcript.split()
    width = len(tokenize(phrase))
    matched = set()
    for start in match_spans(transcript, phrase):
        matched.update(range(start, start + width))

    result = Text()
    for idx, word in enumerate(words):
        if idx:
            result.append(" ")
        result.append(word, style="bold green" if idx in matched else "white")
    return result
