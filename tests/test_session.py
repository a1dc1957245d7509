import pytest

from sebha.errors import OutOfRange, RecognitionUnavailable
from sebha.sebha_typing import (
    CounterAdvanced,
    DictationUpdated,
    SessionChanged,
    SessionState,
    TargetReached,
)
from sebha.session import SessionController

from conftest import FakeVoicePrompts

SUBHAN = "سبحان الله"


def of_type(events, kind):
    return [e for e in events if isinstance(e, kind)]


# =============================================================================
# Speech counting
# =============================================================================

def test_partial_transcripts_apply_only_new_matches(controller):
    controller.start_listening()
    transcripts = [
        "",
        SUBHAN,
        SUBHAN + " سبحان",
        " ".join([SUBHAN] * 3),
    ]

    deltas = [controller.on_transcript(text) for text in transcripts]

    assert deltas == [0, 1, 0, 2]
    assert controller.session.session_tally == 3
    assert controller.session.last_seen_matches == 3
    assert controller.collection[0].count == 3


def test_revised_transcript_with_fewer_matches_is_a_noop(controller):
    controller.start_listening()
    controller.on_transcript(f"{SUBHAN} {SUBHAN}")
    assert controller.on_transcript(SUBHAN) == 0
    assert controller.session.session_tally == 2
    assert controller.session.last_seen_matches == 2


def test_events_are_marshaled_through_dispatcher(controller, recognizers, dispatcher):
    controller.start_listening()
    recognizers.latest.say("سُبْحَانَ اللَّهِ")

    assert controller.session.session_tally == 0  # not delivered yet
    dispatcher.run_pending()
    assert controller.session.session_tally == 1
    assert recognizers.latest.locale == "ar-SA"


def test_restart_resets_baseline_and_stops_previous_capture(controller, recognizers, dispatcher):
    controller.start_listening()
    first = recognizers.latest
    first.say(f"{SUBHAN} {SUBHAN}")
    dispatcher.run_pending()

    controller.start_listening()

    assert first.stopped
    assert controller.session.last_seen_matches == 0
    assert controller.state == SessionState.LISTENING
    second = recognizers.latest
    second.say(SUBHAN)
    dispatcher.run_pending()
    assert controller.session.session_tally == 3


def test_events_from_released_session_are_dropped(controller, recognizers, dispatcher):
    controller.start_listening()
    stale = recognizers.latest
    controller.start_listening()

    stale.say(SUBHAN)
    dispatcher.run_pending()

    assert controller.session.session_tally == 0


def test_transcripts_ignored_when_idle(controller):
    assert controller.state == SessionState.IDLE
    assert controller.on_transcript(SUBHAN) == 0
    assert controller.session.session_tally == 0


def test_final_transcript_counts_then_goes_idle(controller, recognizers, dispatcher):
    controller.start_listening()
    recognizers.latest.say(f"{SUBHAN} {SUBHAN}", is_final=True)
    dispatcher.run_pending()

    assert controller.session.session_tally == 2
    assert controller.state == SessionState.IDLE
    assert recognizers.latest.stopped
    assert not controller.is_listening


def test_recognition_error_goes_idle(controller, recognizers, dispatcher):
    controller.start_listening()
    recognizers.latest.crash(RuntimeError("audio route changed"))
    dispatcher.run_pending()

    assert controller.state == SessionState.IDLE
    assert recognizers.latest.stopped


def test_start_failure_stays_idle(controller, recognizers):
    recognizers.fail = True
    with pytest.raises(RecognitionUnavailable):
        controller.start_listening()
    assert controller.state == SessionState.IDLE
    assert not controller.is_listening


def test_factory_exception_becomes_recognition_unavailable(store, dispatcher):
    def broken_factory():
        raise OSError("no input device")

    ctrl = SessionController(store, broken_factory, dispatcher)
    with pytest.raises(RecognitionUnavailable):
        ctrl.start_listening()
    assert ctrl.state == SessionState.IDLE


# =============================================================================
# Target reached
# =============================================================================

def test_target_reached_once_then_advances(controller, dispatcher, feedback, events):
    controller.update_target(0, 3)

    for _ in range(3):
        controller.manual_increment()

    reached = of_type(events, TargetReached)
    assert len(reached) == 1
    assert reached[0].counter_index == 0
    assert reached[0].session_tally == 3
    assert controller.state == SessionState.TARGET_REACHED
    assert (feedback.haptics, feedback.sounds) == (1, 1)

    controller.manual_increment()  # taps during the pause still count
    assert len(of_type(events, TargetReached)) == 1

    dispatcher.advance(1.0)

    assert controller.collection.selected_index == 1
    assert controller.session.session_tally == 0
    assert controller.session.last_seen_matches == 0
    assert controller.state == SessionState.IDLE
    assert of_type(events, CounterAdvanced) == [CounterAdvanced(from_index=0, to_index=1)]
    assert controller.collection[0].count == 4


def test_advance_wraps_to_first(controller, dispatcher):
    controller.select_counter(2)
    controller.update_target(2, 1)

    controller.manual_increment()
    dispatcher.advance(1.0)

    assert controller.collection.selected_index == 0


def test_zero_target_never_triggers(controller, events):
    controller.update_target(0, 0)
    for _ in range(50):
        controller.manual_increment()
    assert of_type(events, TargetReached) == []
    assert controller.snapshot().progress == 0.0


def test_speech_reaching_target_returns_to_listening(controller, recognizers, dispatcher, events):
    controller.update_target(0, 2)
    controller.start_listening()

    recognizers.latest.say(f"{SUBHAN} {SUBHAN}")
    dispatcher.run_pending()
    assert controller.state == SessionState.TARGET_REACHED

    # transcripts during the pause are not credited
    recognizers.latest.say(f"{SUBHAN} {SUBHAN} {SUBHAN}")
    dispatcher.run_pending()
    assert controller.session.session_tally == 2

    dispatcher.advance(1.0)
    assert controller.state == SessionState.LISTENING
    assert controller.snapshot().phrase == "الحمد لله"

    recognizers.latest.say(f"{SUBHAN} {SUBHAN} {SUBHAN} الحمد لله")
    dispatcher.run_pending()
    assert controller.session.session_tally == 1


def test_advance_to_same_sebha_does_not_recount_earlier_speech(controller, recognizers, dispatcher, events):
    controller.remove_counter(2)
    controller.remove_counter(1)
    controller.update_target(0, 3)
    controller.start_listening()
    first = recognizers.latest

    first.say(" ".join([SUBHAN] * 3))
    dispatcher.run_pending()
    dispatcher.advance(1.0)

    # the old capture's running transcript still holds the three counted repetitions
    first.say(" ".join([SUBHAN] * 4))
    recognizers.latest.say(SUBHAN)
    dispatcher.run_pending()

    assert first.stopped
    assert controller.session.session_tally == 1
    assert controller.collection[0].count == 4
    assert len(of_type(events, TargetReached)) == 1


def test_cycling_through_sebhas_credits_each_repetition_once(controller, recognizers, dispatcher, events):
    for index in range(3):
        controller.update_target(index, 1)
    controller.start_listening()

    for phrase in (SUBHAN, "الحمد لله", "لا اله الا الله"):
        recognizers.latest.say(phrase)
        dispatcher.run_pending()
        dispatcher.advance(1.0)

    assert [c.count for c in controller.collection.counters] == [1, 1, 1]
    assert controller.collection.selected_index == 0
    assert controller.session.session_tally == 0
    assert len(of_type(events, TargetReached)) == 3
    assert controller.state == SessionState.LISTENING


def test_failed_restart_after_advance_goes_idle(controller, recognizers, dispatcher):
    controller.update_target(0, 1)
    controller.start_listening()
    recognizers.latest.say(SUBHAN)
    dispatcher.run_pending()

    recognizers.fail = True
    dispatcher.advance(1.0)

    assert controller.collection.selected_index == 1
    assert not controller.is_listening
    assert controller.state == SessionState.IDLE


def test_voice_prompt_played_after_advance(store, recognizers, dispatcher):
    prompts = FakeVoicePrompts(recorded={"الحمد لله"})
    ctrl = SessionController(store, recognizers, dispatcher, voice_prompts=prompts, voice_prompt_delay=0.5)
    ctrl.update_target(0, 1)

    ctrl.manual_increment()
    dispatcher.advance(1.0)
    assert prompts.played == []
    dispatcher.advance(0.5)
    assert prompts.played == ["الحمد لله"]


def test_no_voice_prompt_without_recording(store, recognizers, dispatcher):
    prompts = FakeVoicePrompts()
    ctrl = SessionController(store, recognizers, dispatcher, voice_prompts=prompts)
    ctrl.update_target(0, 1)
    ctrl.manual_increment()
    dispatcher.advance(5.0)
    assert prompts.played == []


def test_feedback_failure_does_not_break_counting(store, recognizers, dispatcher):
    class BrokenFeedback:
        def trigger_haptic_success(self):
            raise RuntimeError("no haptics")

        def play_completion_sound(self):
            raise RuntimeError("no speaker")

    ctrl = SessionController(store, recognizers, dispatcher, feedback=BrokenFeedback())
    ctrl.update_target(0, 1)
    ctrl.manual_increment()
    assert ctrl.state == SessionState.TARGET_REACHED


# =============================================================================
# Selection and collection operations
# =============================================================================

def test_select_counter_resets_session(controller):
    controller.start_listening()
    controller.on_transcript(SUBHAN)

    controller.select_counter(1)

    assert controller.session.session_tally == 0
    assert controller.session.last_seen_matches == 0
    assert controller.state == SessionState.LISTENING
    assert controller.store._kv.get("selectedSebhaIndex") == 1


def test_select_counter_out_of_range(controller):
    controller.manual_increment()
    with pytest.raises(OutOfRange):
        controller.select_counter(3)
    assert controller.session.session_tally == 1
    assert controller.collection.selected_index == 0


def test_select_during_pending_advance_cancels_it(controller, dispatcher, events):
    controller.update_target(0, 1)
    controller.manual_increment()

    controller.select_counter(2)
    dispatcher.advance(2.0)

    assert controller.collection.selected_index == 2
    assert of_type(events, CounterAdvanced) == []
    assert controller.state == SessionState.IDLE


def test_remove_before_selection_keeps_tally(controller):
    controller.select_counter(2)
    controller.manual_increment()

    controller.remove_counter(0)

    assert controller.collection.selected_index == 1
    assert controller.snapshot().phrase == "لا اله الا الله"
    assert controller.session.session_tally == 1


def test_remove_selected_resets_tally(controller):
    controller.select_counter(1)
    controller.manual_increment()

    controller.remove_counter(1)

    assert controller.collection.selected_index == 0
    assert controller.session.session_tally == 0


def test_add_to_empty_collection(controller):
    for _ in range(3):
        controller.remove_counter(0)
    assert controller.snapshot().selected_index == -1
    controller.manual_increment()  # no counters: ignored

    index = controller.add_counter("X", 5)

    assert index == 0
    assert len(controller.collection) == 1
    assert controller.collection.selected_index == 0
    assert controller.session.session_tally == 0
    assert controller.snapshot().target == 5


def test_reorder_keeps_session(controller):
    controller.select_counter(0)
    controller.manual_increment()
    controller.reorder(0, 2)
    assert controller.collection.selected_index == 2
    assert controller.session.selected_index == 2
    assert controller.session.session_tally == 1


def test_snapshot_progress(controller):
    controller.update_target(0, 4)
    controller.manual_increment()
    snap = controller.snapshot()
    assert snap.progress == 0.25
    assert snap.lifetime_count == 1
    assert snap.phrase == SUBHAN


def test_change_events_and_unsubscribe(controller, events):
    controller.manual_increment()
    assert isinstance(events[-1], SessionChanged)
    assert events[-1].snapshot.session_tally == 1

    seen = []
    unsubscribe = controller.subscribe(seen.append)
    unsubscribe()
    controller.manual_increment()
    assert seen == []


def test_listener_errors_are_contained(controller):
    def broken(event):
        raise ValueError("render failed")

    controller.subscribe(broken)
    controller.manual_increment()
    assert controller.session.session_tally == 1


# =============================================================================
# Dictation
# =============================================================================

def test_dictation_takes_over_capture(controller, recognizers, dispatcher, events):
    controller.start_listening()
    listening = recognizers.latest

    controller.start_dictation()

    assert listening.stopped
    assert controller.state == SessionState.IDLE
    assert controller.is_dictating

    recognizers.latest.say("سبحان الله وبحمده")
    dispatcher.run_pending()
    assert controller.recognized_text == "سبحان الله وبحمده"
    assert controller.session.session_tally == 0
    assert of_type(events, DictationUpdated)[-1].text == "سبحان الله وبحمده"

    assert controller.stop_dictation() == "سبحان الله وبحمده"
    assert not controller.is_dictating
    assert recognizers.latest.stopped


def test_final_dictation_stops_capture(controller, recognizers, dispatcher):
    controller.start_dictation()
    recognizers.latest.say("استغفر الله", is_final=True)
    dispatcher.run_pending()
    assert not controller.is_dictating
    assert controller.recognized_text == "استغفر الله"


def test_close_releases_everything(controller, recognizers, dispatcher, events):
    controller.update_target(0, 1)
    controller.start_listening()
    controller.manual_increment()

    controller.close()
    dispatcher.advance(5.0)

    assert recognizers.latest.stopped
    assert controller.state == SessionState.IDLE
    assert of_type(events, CounterAdvanced) == []
