"""Fire-and-forget feedback sinks used when a target is reached."""

import logging
from typing import Protocol

from rich.console import Console

logger = logging.getLogger(__name__)


class FeedbackSink(Protocol):
    def trigger_haptic_success(self) -> None: ...

    def play_completion_sound(self) -> None: ...


class NullFeedback:
    def trigger_haptic_success(self) -> None:
        pass

    def play_completion_sound(self) -> None:
        pass


class TerminalFeedback:
    """
    Terminal stand-in for the phone's haptics and system sound.

    The "haptic" is a short highlighted flash line, the sound is the
    terminal bell.
    """

    def __init__(self, console: Console | None = None, bell: bool = True):
        self.console = console or Console()
        self.bell = bell

    def trigger_haptic_success(self) -> None:
        self.console.print("[bold green]✓[/bold green]", end=" ")

    def play_completion_sound(self) -> None:
        if not self.bell:
            return
        try:
            self.console.bell()
        except OSError as e:
            logger.debug(f"Terminal bell failed: {e}")
