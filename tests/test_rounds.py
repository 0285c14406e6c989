"""Tests for the round phase state machine.

Verifies that:
- A full round moves armed → reveal → waiting-input → rearming → armed
- Each reveal-end policy ends the reveal for the right reason
- Timers (reveal silence, input failsafe, rearm delay) fire on schedule
- Stale timers never act on a later phase
- reset() is idempotent and leaves no pending timers
"""

import pytest

from zensolver.core.logging import Logger
from zensolver.core.model import DetectorConfig, EventKind, Phase, RevealEnd, RoundState, Step
from zensolver.core.rounds import (
    RoundEvent,
    RoundFSM,
    apply_event,
    arm_state,
    complete_rearm,
    expected_reveal_len,
    expire_input,
    expire_reveal,
    reveal_end_reason,
)
from zensolver.core.timers import ManualScheduler


def make_fsm(**overrides) -> tuple[RoundFSM, ManualScheduler]:
    scheduler = ManualScheduler()
    return RoundFSM(DetectorConfig(**overrides), scheduler, Logger()), scheduler


def feed(
    fsm: RoundFSM,
    scheduler: ManualScheduler,
    t: float,
    index: int = 0,
    kind: EventKind = EventKind.Reveal,
) -> RoundState:
    """Advance time to t, then deliver one event."""
    scheduler.advance_to(t)
    step = Step(row=index // 6, col=index % 6, frame=int(t), t=t, confidence=1.0, kind=kind)
    return fsm.handle_event(step, index)


def reveal_state(t: float = 0.0, indices: tuple[int, ...] = (0,)) -> RoundState:
    return RoundState(
        phase=Phase.Reveal,
        reveal_indices=indices,
        last_event_t=t,
        last_reveal_t=t,
    )


class LeakyScheduler(ManualScheduler):
    """Scheduler whose handles ignore cancel(), to exercise the phase guard."""

    class _Handle:
        def __init__(self, timer) -> None:
            self._timer = timer

        def cancel(self) -> None:
            pass

        def remaining_ms(self):
            return self._timer.remaining_ms()

    def call_later(self, delay_ms, callback):
        return self._Handle(super().call_later(delay_ms, callback))


class TestPureTransitions:
    """Tests for the pure transition functions."""

    def test_arm_clears_round_trackers(self) -> None:
        state = RoundState(
            phase=Phase.WaitingInput,
            round_index=2,
            reveal_indices=(1, 2),
            input_count=1,
            last_reveal_t=50.0,
        )
        armed = arm_state(state)
        assert armed.phase is Phase.Armed
        assert armed.round_index == 2
        assert armed.reveal_indices == ()
        assert armed.input_count == 0
        assert armed.last_reveal_t is None

    def test_expected_length_grows_per_round(self) -> None:
        config = DetectorConfig(initial_reveal_len=3)
        assert expected_reveal_len(RoundState(round_index=0), config) == 3
        assert expected_reveal_len(RoundState(round_index=4), config) == 7

    def test_idle_event_starts_reveal(self) -> None:
        """Idle arms and the same event starts the reveal."""
        state, reason = apply_event(
            RoundState(), RoundEvent(5, EventKind.Reveal, 10.0), DetectorConfig()
        )
        assert state.phase is Phase.Reveal
        assert state.reveal_indices == (5,)
        assert reason is None

    def test_idle_event_ignored_without_auto_detect(self) -> None:
        config = DetectorConfig(auto_round_detect=False)
        state, _ = apply_event(RoundState(), RoundEvent(5, EventKind.Reveal, 10.0), config)
        assert state.phase is Phase.Idle

    def test_input_kind_ends_reveal(self) -> None:
        config = DetectorConfig(use_expected_reveal_len=False)
        state, reason = apply_event(reveal_state(), RoundEvent(3, EventKind.Input, 100.0), config)

        assert reason is RevealEnd.InputKind
        assert state.phase is Phase.WaitingInput
        assert state.reveal_len == 1
        assert state.input_count == 1

    def test_gap_ends_reveal(self) -> None:
        config = DetectorConfig(use_expected_reveal_len=False, reveal_max_isi_ms=500.0)
        event = RoundEvent(3, EventKind.Reveal, 600.0)
        assert reveal_end_reason(reveal_state(), event, config) is RevealEnd.Gap

    def test_gap_within_isi_extends(self) -> None:
        config = DetectorConfig(use_expected_reveal_len=False, reveal_max_isi_ms=500.0)
        state, reason = apply_event(
            reveal_state(), RoundEvent(3, EventKind.Reveal, 400.0), config
        )
        assert reason is None
        assert state.reveal_indices == (0, 3)
        assert state.last_reveal_t == 400.0

    def test_hard_timeout(self) -> None:
        event = RoundEvent(3, EventKind.Reveal, 2000.0)
        assert reveal_end_reason(reveal_state(), event, DetectorConfig()) is RevealEnd.HardTimeout

    def test_expected_length_cap_with_round_index(self) -> None:
        """Round 1 expects four reveals; the fourth ends the reveal."""
        config = DetectorConfig()
        state = arm_state(RoundState(round_index=1))

        reasons = []
        for i, t in enumerate((0.0, 100.0, 200.0, 300.0)):
            state, reason = apply_event(state, RoundEvent(i, EventKind.Reveal, t), config)
            reasons.append(reason)

        assert reasons == [None, None, None, RevealEnd.ExpectedLength]
        assert state.phase is Phase.WaitingInput
        assert state.reveal_len == 4
        assert state.input_count == 0

    def test_waiting_input_counts_to_rearming(self) -> None:
        state = RoundState(phase=Phase.WaitingInput, reveal_indices=(1, 2), input_count=1)
        state, _ = apply_event(state, RoundEvent(2, EventKind.Input, 10.0), DetectorConfig())
        assert state.phase is Phase.Rearming
        assert state.input_count == 2

    def test_rearming_ignores_events(self) -> None:
        state = RoundState(phase=Phase.Rearming, reveal_indices=(1,), input_count=1)
        new_state, reason = apply_event(
            state, RoundEvent(2, EventKind.Reveal, 10.0), DetectorConfig()
        )
        assert new_state == state
        assert reason is None

    def test_expiry_functions_check_phase(self) -> None:
        """Expiry transitions only apply to their own phase."""
        armed = RoundState(phase=Phase.Armed)
        assert expire_reveal(armed) == armed
        assert expire_input(armed) == armed
        assert complete_rearm(armed) == armed

        rearming = RoundState(phase=Phase.Rearming, round_index=2)
        next_round = complete_rearm(rearming)
        assert next_round.phase is Phase.Armed
        assert next_round.round_index == 3


class TestRoundShape:
    """Tests for a complete round through RoundFSM."""

    def test_full_round(self) -> None:
        fsm, scheduler = make_fsm()

        for t, idx in ((0.0, 1), (150.0, 2), (300.0, 3)):
            feed(fsm, scheduler, t, idx)
        assert fsm.phase is Phase.WaitingInput
        assert fsm.state.reveal_indices == (1, 2, 3)

        for t, idx in ((1200.0, 1), (1350.0, 2)):
            feed(fsm, scheduler, t, idx)
        assert fsm.phase is Phase.WaitingInput
        assert fsm.state.input_progress == 2

        feed(fsm, scheduler, 1500.0, 3)
        assert fsm.phase is Phase.Rearming
        assert fsm.state.input_count == 3
        assert len(fsm.steps) == 6

    def test_rearm_advances_round_and_clears_history(self) -> None:
        fsm, scheduler = make_fsm(rearm_delay_ms=120.0)
        for t in (0.0, 150.0, 300.0, 1200.0, 1350.0, 1500.0):
            feed(fsm, scheduler, t)

        scheduler.advance_to(1619.0)
        assert fsm.phase is Phase.Rearming

        scheduler.advance_to(1620.0)
        assert fsm.phase is Phase.Armed
        assert fsm.state.round_index == 1
        assert fsm.steps == []

    def test_append_across_rounds_keeps_history(self) -> None:
        fsm, scheduler = make_fsm(append_across_rounds=True)
        for t in (0.0, 150.0, 300.0, 1200.0, 1350.0, 1500.0):
            feed(fsm, scheduler, t)

        scheduler.advance_to(2000.0)

        assert fsm.state.round_index == 1
        assert len(fsm.steps) == 6

    def test_gap_policy_round(self) -> None:
        fsm, scheduler = make_fsm(
            use_expected_reveal_len=False,
            cluster_gap_ms=5000.0,
            reveal_max_isi_ms=500.0,
        )

        feed(fsm, scheduler, 0.0, 1)
        feed(fsm, scheduler, 300.0, 2)
        assert fsm.phase is Phase.Reveal

        # The gap ends the reveal and the event is the first input
        feed(fsm, scheduler, 900.0, 1)
        assert fsm.phase is Phase.WaitingInput
        assert fsm.state.reveal_len == 2
        assert fsm.state.input_count == 1

        feed(fsm, scheduler, 1000.0, 2)
        assert fsm.phase is Phase.Rearming

    def test_rearming_records_but_ignores_events(self) -> None:
        fsm, scheduler = make_fsm()
        for t in (0.0, 150.0, 300.0, 1200.0, 1350.0, 1500.0):
            feed(fsm, scheduler, t)

        feed(fsm, scheduler, 1550.0)

        assert fsm.phase is Phase.Rearming
        assert fsm.state.input_count == 3
        assert len(fsm.steps) == 7


class TestTimers:
    """Tests for the deadline timers."""

    def test_reveal_silence(self) -> None:
        fsm, scheduler = make_fsm()
        feed(fsm, scheduler, 0.0)

        scheduler.advance_to(899.0)
        assert fsm.phase is Phase.Reveal

        scheduler.advance_to(900.0)
        assert fsm.phase is Phase.WaitingInput

    def test_silence_rescheduled_by_each_reveal(self) -> None:
        fsm, scheduler = make_fsm()
        feed(fsm, scheduler, 0.0)
        feed(fsm, scheduler, 500.0)

        scheduler.advance_to(1000.0)
        assert fsm.phase is Phase.Reveal

        scheduler.advance_to(1400.0)
        assert fsm.phase is Phase.WaitingInput

    def test_silence_uses_hard_timeout_when_shorter(self) -> None:
        fsm, scheduler = make_fsm(cluster_gap_ms=5000.0, reveal_hard_timeout_ms=1000.0)
        feed(fsm, scheduler, 0.0)

        scheduler.advance_to(1000.0)
        assert fsm.phase is Phase.WaitingInput

    def test_input_timeout_rearms_same_round(self) -> None:
        fsm, scheduler = make_fsm(input_timeout_ms=5000.0)
        feed(fsm, scheduler, 0.0)
        scheduler.advance_to(900.0)
        assert fsm.phase is Phase.WaitingInput

        scheduler.advance_to(5899.0)
        assert fsm.phase is Phase.WaitingInput

        scheduler.advance_to(5900.0)
        assert fsm.phase is Phase.Armed
        assert fsm.state.round_index == 0
        assert len(fsm.steps) == 1

    def test_input_timeout_floor(self) -> None:
        """Input timeouts below two seconds are raised to two seconds."""
        fsm, scheduler = make_fsm(input_timeout_ms=500.0)
        feed(fsm, scheduler, 0.0)
        scheduler.advance_to(900.0)

        scheduler.advance_to(1400.0)
        assert fsm.phase is Phase.WaitingInput

        scheduler.advance_to(2900.0)
        assert fsm.phase is Phase.Armed

    def test_stale_timer_is_ignored(self) -> None:
        """A timer that survives cancellation must not act on a new reveal."""
        scheduler = LeakyScheduler()
        fsm = RoundFSM(DetectorConfig(), scheduler, Logger())

        feed(fsm, scheduler, 0.0)  # silence timer due at 900
        scheduler.advance_to(100.0)
        fsm.reset()
        feed(fsm, scheduler, 200.0)  # new silence timer due at 1100

        scheduler.advance_to(900.0)
        assert fsm.phase is Phase.Reveal

        scheduler.advance_to(1100.0)
        assert fsm.phase is Phase.WaitingInput


class TestSuspend:
    """Tests for freezing the deadline timers while detection is stopped."""

    def test_suspended_input_timeout_keeps_round(self) -> None:
        fsm, scheduler = make_fsm(input_timeout_ms=5000.0)
        feed(fsm, scheduler, 0.0)
        scheduler.advance_to(900.0)  # input timeout due at 5900
        scheduler.advance_to(2900.0)

        fsm.suspend()
        assert fsm.suspended
        assert scheduler.pending == 0

        scheduler.advance_to(30000.0)
        assert fsm.phase is Phase.WaitingInput
        assert fsm.state.reveal_indices == (0,)

        # 3000 ms were left when suspended
        fsm.resume()
        assert not fsm.suspended
        scheduler.advance_to(32999.0)
        assert fsm.phase is Phase.WaitingInput

        scheduler.advance_to(33000.0)
        assert fsm.phase is Phase.Armed

    def test_phase_change_drops_frozen_timers(self) -> None:
        fsm, scheduler = make_fsm()
        feed(fsm, scheduler, 0.0)

        fsm.suspend()
        fsm.reset()
        fsm.resume()

        assert fsm.phase is Phase.Idle
        assert scheduler.pending == 0

    def test_suspend_and_resume_are_idempotent(self) -> None:
        fsm, scheduler = make_fsm()
        feed(fsm, scheduler, 0.0)

        fsm.suspend()
        fsm.suspend()
        fsm.resume()
        fsm.resume()

        assert scheduler.pending == 1
        scheduler.advance_to(900.0)
        assert fsm.phase is Phase.WaitingInput


class TestCommands:
    """Tests for reset, arm and undo."""

    def test_reset_is_idempotent(self) -> None:
        fsm, scheduler = make_fsm()
        feed(fsm, scheduler, 0.0)
        assert scheduler.pending == 1

        fsm.reset()
        fsm.reset()

        assert fsm.phase is Phase.Idle
        assert fsm.state == RoundState()
        assert fsm.steps == []
        assert scheduler.pending == 0

    def test_reset_keeping_history(self) -> None:
        fsm, scheduler = make_fsm()
        feed(fsm, scheduler, 0.0)
        fsm.reset(clear_history=False)
        assert len(fsm.steps) == 1

    def test_manual_arm(self) -> None:
        fsm, scheduler = make_fsm(auto_round_detect=False)

        feed(fsm, scheduler, 0.0)
        assert fsm.phase is Phase.Idle
        assert len(fsm.steps) == 1

        fsm.arm()
        assert fsm.phase is Phase.Armed

        feed(fsm, scheduler, 100.0)
        assert fsm.phase is Phase.Reveal

    def test_undo(self) -> None:
        fsm, scheduler = make_fsm()
        feed(fsm, scheduler, 0.0, 1)
        feed(fsm, scheduler, 100.0, 2)

        step = fsm.undo()

        assert step is not None
        assert step.label == "r1c3"
        assert len(fsm.steps) == 1
        assert fsm.phase is Phase.Reveal
        assert fsm.state.reveal_len == 2

    def test_undo_empty(self) -> None:
        fsm, _ = make_fsm()
        assert fsm.undo() is None


class TestListeners:
    """Tests for state and history notifications."""

    def test_state_listener_sees_compound_transition(self) -> None:
        fsm, scheduler = make_fsm()
        seen = []
        fsm.add_listener(lambda old, new: seen.append((old.phase, new.phase)))

        feed(fsm, scheduler, 0.0)

        assert seen == [(Phase.Idle, Phase.Reveal)]

    def test_steps_listener(self) -> None:
        fsm, scheduler = make_fsm()
        seen = []
        fsm.add_steps_listener(lambda steps: seen.append([s.label for s in steps]))

        feed(fsm, scheduler, 0.0, 0)
        fsm.undo()

        assert seen == [["r1c1"], []]

    def test_state_change_is_logged(self) -> None:
        logger = Logger()
        fsm = RoundFSM(DetectorConfig(), ManualScheduler(), logger)
        fsm.arm()

        messages = [e.message for e in logger.buffer.get_all()]
        assert any("idle" in m and "armed" in m for m in messages)

    @pytest.mark.parametrize("phase", [Phase.Armed, Phase.Idle])
    def test_no_notification_without_change(self, phase: Phase) -> None:
        fsm, _ = make_fsm()
        if phase is Phase.Armed:
            fsm.arm()
        seen = []
        fsm.add_listener(lambda old, new: seen.append(new))

        if phase is Phase.Armed:
            fsm.arm()
        else:
            fsm.reset()

        assert seen == []
