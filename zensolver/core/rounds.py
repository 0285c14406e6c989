"""Round phase state machine.

Consumes confirmed events and tracks the phase of the memory game:
idle → armed → reveal → waiting-input → rearming → armed → ...

Transitions are pure functions from RoundState to RoundState. RoundFSM
wraps them with the visible Step history and the deadline timers
(reveal silence, input failsafe, rearm delay), which are cancelled on
every phase change and re-check the phase they were scheduled for
before acting. Stopping detection suspends the timers with the time
left on each.
"""

from dataclasses import dataclass, replace
from typing import Callable, Optional

from .logging import Logger, get_logger
from .model import DetectorConfig, EventKind, Phase, RevealEnd, RoundState, Step
from .timers import Scheduler, TimerHandle


@dataclass(frozen=True)
class RoundEvent:
    """A confirmed event as seen by the state machine.

    Attributes:
        index: Row-major cell index
        kind: Reveal or input classification
        t: Timestamp in milliseconds
    """

    index: int
    kind: EventKind
    t: float


def idle_state() -> RoundState:
    """The pre-start state."""
    return RoundState()


def arm_state(state: RoundState) -> RoundState:
    """Arm a round, clearing the per-round trackers."""
    return replace(
        state,
        phase=Phase.Armed,
        reveal_indices=(),
        input_count=0,
        last_reveal_t=None,
    )


def expected_reveal_len(state: RoundState, config: DetectorConfig) -> int:
    """Reveal length expected in the current round."""
    return config.initial_reveal_len + state.round_index


def reveal_end_reason(
    state: RoundState,
    event: RoundEvent,
    config: DetectorConfig,
) -> Optional[RevealEnd]:
    """Decide whether an event during reveal ends the reveal.

    Policies are checked in order: expected-length cap, hard silence
    timeout, explicit input kind, inter-event gap.

    Returns:
        The reason the reveal ends, or None if the event extends it.
    """
    gap = event.t - state.last_reveal_t if state.last_reveal_t is not None else 0.0

    if config.use_expected_reveal_len:
        if state.reveal_len >= expected_reveal_len(state, config):
            return RevealEnd.ExpectedLength
        if gap > config.reveal_hard_timeout_ms:
            return RevealEnd.HardTimeout
    if event.kind is EventKind.Input:
        return RevealEnd.InputKind
    if gap > config.reveal_max_isi_ms:
        return RevealEnd.Gap
    return None


def _count_input(state: RoundState, event: RoundEvent) -> RoundState:
    count = state.input_count + 1
    phase = Phase.Rearming if count >= state.reveal_len else Phase.WaitingInput
    return replace(state, phase=phase, input_count=count, last_event_t=event.t)


def apply_event(
    state: RoundState,
    event: RoundEvent,
    config: DetectorConfig,
) -> tuple[RoundState, Optional[RevealEnd]]:
    """Apply one confirmed event.

    A single event may cause several logical transitions, applied in
    sequence: idle arms (with auto round detection) and the same event
    then starts the reveal; an event that ends the reveal is counted as
    the first input.

    Returns:
        The new state and, if the reveal ended, why.
    """
    if state.phase is Phase.Idle:
        if not config.auto_round_detect:
            return state, None
        state = arm_state(state)

    if state.phase is Phase.Armed:
        state = replace(
            state,
            phase=Phase.Reveal,
            reveal_indices=(event.index,),
            input_count=0,
            last_event_t=event.t,
            last_reveal_t=event.t,
        )
        return _cap_reveal(state, config)

    if state.phase is Phase.Reveal:
        reason = reveal_end_reason(state, event, config)
        if reason is None:
            state = replace(
                state,
                reveal_indices=state.reveal_indices + (event.index,),
                last_event_t=event.t,
                last_reveal_t=event.t,
            )
            return _cap_reveal(state, config)
        state = replace(state, phase=Phase.WaitingInput)
        return _count_input(state, event), reason

    if state.phase is Phase.WaitingInput:
        return _count_input(state, event), None

    # Rearming ignores events
    return state, None


def _cap_reveal(
    state: RoundState,
    config: DetectorConfig,
) -> tuple[RoundState, Optional[RevealEnd]]:
    if config.use_expected_reveal_len and state.reveal_len >= expected_reveal_len(state, config):
        return replace(state, phase=Phase.WaitingInput), RevealEnd.ExpectedLength
    return state, None


def expire_reveal(state: RoundState) -> RoundState:
    """Reveal silence elapsed: start waiting for input."""
    if state.phase is not Phase.Reveal:
        return state
    return replace(state, phase=Phase.WaitingInput)


def expire_input(state: RoundState) -> RoundState:
    """Input failsafe elapsed: re-arm without advancing the round."""
    if state.phase is not Phase.WaitingInput:
        return state
    return arm_state(state)


def complete_rearm(state: RoundState) -> RoundState:
    """Rearm delay elapsed: arm the next round."""
    if state.phase is not Phase.Rearming:
        return state
    return arm_state(replace(state, round_index=state.round_index + 1))


StateListener = Callable[[RoundState, RoundState], None]


class RoundFSM:
    """Round state machine with step history and deadline timers.

    Every event is appended to the step history regardless of phase;
    the phase governs round semantics on top of that log.
    """

    def __init__(
        self,
        config: DetectorConfig,
        scheduler: Scheduler,
        logger: Optional[Logger] = None,
    ) -> None:
        """Initialize in the idle phase.

        Args:
            config: Detector config (round timing fields are used)
            scheduler: Backs the deadline timers
            logger: Logger instance (uses global if None)
        """
        self._config = config.sanitized()
        self._scheduler = scheduler
        self._logger = logger or get_logger()
        self._state = idle_state()
        self._steps: list[Step] = []
        self._timers: list[tuple[TimerHandle, Phase, Callable[[], None]]] = []
        self._suspended: Optional[list[tuple[float, Phase, Callable[[], None]]]] = None
        self._phase_token = 0
        self._listeners: list[StateListener] = []
        self._steps_listeners: list[Callable[[list[Step]], None]] = []

    @property
    def state(self) -> RoundState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def steps(self) -> list[Step]:
        """Copy of the visible step history."""
        return list(self._steps)

    @property
    def config(self) -> DetectorConfig:
        return self._config

    def update_config(self, config: DetectorConfig) -> None:
        """Use a new config from the next event or timer on."""
        self._config = config.sanitized()

    def add_listener(self, callback: StateListener) -> None:
        """Notify callback(old, new) on every committed state change."""
        self._listeners.append(callback)

    def add_steps_listener(self, callback: Callable[[list[Step]], None]) -> None:
        """Notify callback(steps) whenever the history changes."""
        self._steps_listeners.append(callback)

    # Commands

    def handle_event(self, step: Step, index: int) -> RoundState:
        """Record a confirmed event and advance the state machine.

        Args:
            step: The step to append to the history
            index: Row-major cell index of the step

        Returns:
            The state after the event
        """
        self._steps.append(step)
        self._notify_steps()

        event = RoundEvent(index=index, kind=step.kind, t=step.t)
        new_state, reason = apply_event(self._state, event, self._config)
        self._commit(new_state, reason.value if reason else None)
        return self._state

    def reset(self, clear_history: bool = True) -> None:
        """Return to idle, round 0, clearing round trackers and history."""
        if clear_history and self._steps:
            self._steps.clear()
            self._notify_steps()
        self._commit(idle_state(), "reset")

    def arm(self, clear_history: bool = False) -> None:
        """Arm a round manually from any phase."""
        if clear_history and self._steps:
            self._steps.clear()
            self._notify_steps()
        self._commit(arm_state(self._state), "manual arm")

    def undo(self) -> Optional[Step]:
        """Drop the last recorded step. Round state is not rewound."""
        if not self._steps:
            return None
        step = self._steps.pop()
        self._notify_steps()
        return step

    def clear_history(self) -> None:
        if self._steps:
            self._steps.clear()
            self._notify_steps()

    def cancel_timers(self) -> None:
        for handle, _, _ in self._timers:
            handle.cancel()
        self._timers.clear()
        if self._suspended is not None:
            self._suspended.clear()

    @property
    def suspended(self) -> bool:
        return self._suspended is not None

    def suspend(self) -> None:
        """Freeze the deadline timers, keeping the time left on each.

        Nothing changes the phase while suspended except the explicit
        commands; a phase change drops the frozen timers.
        """
        if self._suspended is not None:
            return
        frozen = []
        for handle, phase, action in self._timers:
            remaining = handle.remaining_ms()
            handle.cancel()
            if remaining is not None:
                frozen.append((remaining, phase, action))
        self._timers.clear()
        self._suspended = frozen

    def resume(self) -> None:
        """Restart frozen timers with the time they had left."""
        if self._suspended is None:
            return
        frozen, self._suspended = self._suspended, None
        for remaining, phase, action in frozen:
            if phase is self._state.phase:
                self._schedule(remaining, phase, action)

    # Internals

    def _commit(self, new_state: RoundState, reason: Optional[str] = None) -> None:
        old_state = self._state
        if new_state == old_state:
            return
        self._state = new_state

        phase_changed = new_state.phase is not old_state.phase
        if phase_changed:
            self._phase_token += 1
            self.cancel_timers()
            self._logger.state_change(
                old_state.phase.value,
                new_state.phase.value,
                new_state.round_index,
                reason,
            )
            self._enter(new_state)
        elif new_state.phase is Phase.Reveal and new_state.last_reveal_t != old_state.last_reveal_t:
            # Reveal extended: restart the silence timers
            self.cancel_timers()
            self._schedule_reveal_silence()

        for listener in list(self._listeners):
            listener(old_state, new_state)

    def _enter(self, state: RoundState) -> None:
        if state.phase is Phase.Reveal:
            self._schedule_reveal_silence()
        elif state.phase is Phase.WaitingInput:
            self._schedule(self._config.input_timeout_ms, Phase.WaitingInput, self._on_input_timeout)
        elif state.phase is Phase.Rearming:
            self._schedule(self._config.rearm_delay_ms, Phase.Rearming, self._on_rearm)
            self._logger.info(
                "round complete",
                revealed=state.reveal_len,
                inputs=state.input_count,
            )

    def _schedule_reveal_silence(self) -> None:
        delay = self._config.cluster_gap_ms
        if self._config.use_expected_reveal_len:
            delay = min(delay, self._config.reveal_hard_timeout_ms)
        self._schedule(delay, Phase.Reveal, self._on_reveal_silence)

    def _schedule(self, delay_ms: float, phase: Phase, action: Callable[[], None]) -> None:
        if self._suspended is not None:
            self._suspended.append((delay_ms, phase, action))
            return

        token = self._phase_token

        def fire() -> None:
            # Stale timers must not act on a later phase
            if self._phase_token != token or self._state.phase is not phase:
                return
            action()

        self._timers.append((self._scheduler.call_later(delay_ms, fire), phase, action))

    def _on_reveal_silence(self) -> None:
        self._commit(expire_reveal(self._state), RevealEnd.Silence.value)

    def _on_input_timeout(self) -> None:
        self._logger.warning("input timeout, re-arming", inputs=self._state.input_count)
        self._commit(expire_input(self._state), "input timeout")

    def _on_rearm(self) -> None:
        if not self._config.append_across_rounds:
            self.clear_history()
        self._commit(complete_rearm(self._state), "rearm")

    def _notify_steps(self) -> None:
        steps = list(self._steps)
        for listener in list(self._steps_listeners):
            listener(steps)
