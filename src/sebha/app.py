"""
Sebha - terminal host

Runs the counting session in an asyncio loop (the loop is the session's
control thread) and reads commands from the keyboard:

    tap | <Enter>          count one
    listen / stop          count by voice
    select N               switch sebha
    add T TEXT             add a sebha with target T
    remove N | move A B | target N T | fav N
    dictate                speak the text of a new sebha, then `add T`
    record N | play N | unrecord N
    show TEXT              preview which words of TEXT count for the selected sebha
    list | stats | help | quit
"""

import argparse
import asyncio
import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from .config import Settings, get_settings
from .errors import OutOfRange, SebhaError
from .feedback import TerminalFeedback
from .history import summarize
from .persistence import JsonFileKeyValueStore
from .recognition import VoskRecognitionSession
from .render import render_counters, render_session, render_stats, render_transcript
from .sebha_typing import CounterAdvanced, DictationUpdated, SessionChanged, SessionEvent, TargetReached
from .session import SessionController
from .store import CounterStore
from .voice_prompts import VoicePromptStore

logger = logging.getLogger(__name__)

PROMPT = "[bold cyan]sebha›[/bold cyan] "


def build_controller(settings: Settings, console: Console, loop: asyncio.AbstractEventLoop) -> SessionController:
    store = CounterStore(JsonFileKeyValueStore(settings.state_file))

    def make_recognizer() -> VoskRecognitionSession:
        return VoskRecognitionSession(
            settings.vosk_model_path,
            sample_rate=settings.sample_rate,
            block_size=settings.block_size,
            device=settings.input_device,
        )

    return SessionController(
        store,
        make_recognizer,
        loop,
        feedback=TerminalFeedback(console),
        voice_prompts=VoicePromptStore(settings.recordings_dir, store, device=settings.input_device),
        locale=settings.locale,
        advance_delay=settings.advance_delay_sec,
        voice_prompt_delay=settings.voice_prompt_delay_sec,
    )


class TerminalHost:
    def __init__(self, controller: SessionController, console: Console):
        self.controller = controller
        self.console = console
        self._last_tally = controller.session.session_tally
        controller.subscribe(self.on_event)

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def on_event(self, event: SessionEvent) -> None:
        if isinstance(event, TargetReached):
            self.console.print(f"[bold yellow]Target reached:[/bold yellow] {event.phrase} × {event.session_tally}")
        elif isinstance(event, CounterAdvanced):
            self.console.print(render_session(self.controller.snapshot()))
        elif isinstance(event, DictationUpdated):
            self.console.print(f"[magenta]…[/magenta] {event.text}")
        elif isinstance(event, SessionChanged):
            snap = event.snapshot
            # only speech-driven changes need echoing, commands print their own result
            if snap.is_listening and snap.session_tally != self._last_tally:
                self.console.print(f"[green]{snap.phrase}[/green] {snap.session_tally}/{snap.target or '–'}")
            self._last_tally = snap.session_tally

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def _phrase_at(self, arg: str) -> str:
        index = self._index(arg)
        collection = self.controller.collection
        if not collection.is_valid_index(index):
            raise OutOfRange(f"No sebha at index {index} (have {len(collection)})")
        return collection[index].phrase

    def _index(self, arg: str) -> int:
        try:
            return int(arg)
        except ValueError:
            raise SebhaError(f"Expected a sebha number, got {arg!r}") from None

    async def handle(self, line: str) -> bool:
        """Run one command. Returns False when the user quits."""
        c = self.controller
        cmd, _, rest = line.strip().partition(" ")
        args = rest.split()

        if cmd in ("", "tap", "+"):
            c.manual_increment()
            self.console.print(render_session(c.snapshot()))
        elif cmd == "listen":
            c.start_listening()
            self.console.print(f"[green]Listening for[/green] {c.snapshot().phrase}")
        elif cmd == "stop":
            if c.is_dictating:
                text = c.stop_dictation()
                self.console.print(f"Dictated: {text or '(nothing)'}")
            else:
                c.stop_listening()
                self.console.print("Stopped listening")
        elif cmd == "select" and len(args) == 1:
            c.select_counter(self._index(args[0]))
            self.console.print(render_session(c.snapshot()))
        elif cmd == "add" and args:
            phrase = rest.split(maxsplit=1)[1] if len(args) > 1 else c.recognized_text
            index = c.add_counter(phrase, args[0])
            self.console.print(f"Added #{index}: {phrase}")
        elif cmd == "remove" and len(args) == 1:
            c.remove_counter(self._index(args[0]))
            self.console.print(render_counters(c.collection))
        elif cmd == "move" and len(args) == 2:
            c.reorder(self._index(args[0]), self._index(args[1]))
            self.console.print(render_counters(c.collection))
        elif cmd == "target" and len(args) == 2:
            target = c.update_target(self._index(args[0]), args[1])
            self.console.print(f"Target set to {target}")
        elif cmd == "fav" and len(args) == 1:
            favorite = c.toggle_favorite(self._index(args[0]))
            self.console.print("★ Favorite" if favorite else "Removed from favorites")
        elif cmd == "dictate":
            c.start_dictation()
            self.console.print("[magenta]Say the sebha text, then `stop`[/magenta]")
        elif cmd == "record" and len(args) == 1:
            await self.record(self._phrase_at(args[0]))
        elif cmd == "play" and len(args) == 1:
            c.voice_prompts.play(self._phrase_at(args[0]))
        elif cmd == "unrecord" and len(args) == 1:
            deleted = c.voice_prompts.delete(self._phrase_at(args[0]))
            self.console.print("Voice prompt deleted" if deleted else "No voice prompt")
        elif cmd == "list":
            self.console.print(render_counters(c.collection))
        elif cmd == "stats":
            self.console.print(render_stats(summarize(c.collection, c.store.history)))
        elif cmd == "show" and args:
            self.console.print(render_transcript(rest, c.snapshot().phrase))
        elif cmd == "help":
            self.console.print(__doc__)
        elif cmd in ("quit", "exit", "q"):
            return False
        else:
            self.console.print(f"[red]Unknown command:[/red] {line.strip()} (try `help`)")
        return True

    async def record(self, phrase: str) -> None:
        was_listening = self.controller.is_listening
        # one microphone capture at a time
        if self.controller.is_dictating:
            self.controller.stop_dictation()
        self.controller.stop_listening()
        try:
            with self.controller.voice_prompts.record(phrase):
                await asyncio.to_thread(self.console.input, "[red]● Recording[/red], press Enter to stop ")
        finally:
            if was_listening:
                self.controller.start_listening()
        if self.controller.voice_prompts.has_recording(phrase):
            self.console.print(f"Voice prompt saved for {phrase}")

    async def run(self) -> None:
        self.console.print(render_counters(self.controller.collection))
        self.console.print(render_session(self.controller.snapshot()))
        while True:
            try:
                line = await asyncio.to_thread(self.console.input, PROMPT)
            except (EOFError, KeyboardInterrupt):
                break
            try:
                if not await self.handle(line):
                    break
            except SebhaError as e:
                self.console.print(f"[red]{e}[/red]")
            except OSError as e:
                logger.error(f"Audio device error: {e}")
                self.console.print(f"[red]Audio device error:[/red] {e}")


async def run(settings: Settings, console: Console) -> None:
    controller = build_controller(settings, console, asyncio.get_running_loop())
    if controller.store.recovered_from_corruption:
        console.print("[yellow]Saved sebhas were unreadable, defaults restored[/yellow]")
    try:
        await TerminalHost(controller, console).run()
    finally:
        controller.close()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="sebha", description="Tasbih counter with voice counting")
    parser.add_argument("--data-dir", type=Path, help="Where sebhas and voice prompts are stored")
    parser.add_argument("--model", type=Path, help="Path to an unpacked Vosk model")
    parser.add_argument("--device", type=int, help="Input device index (see `python -m sounddevice`)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING...")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    overrides = {
        key: value
        for key, value in {
            "data_dir": args.data_dir,
            "vosk_model_path": args.model,
            "input_device": args.device,
            "log_level": args.log_level,
        }.items()
        if value is not None
    }
    settings = get_settings().model_copy(update=overrides)

    console = Console()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    asyncio.run(run(settings, console))


if __name__ == "__main__":
    main()
