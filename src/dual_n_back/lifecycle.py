import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Sequence

from dual_n_back.constants import BREAK_MS, TRIAL_MS
from dual_n_back.nback import Trial, round_half_up
from dual_n_back.scheduling import Scheduler, TimerHandle


class Phase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    BETWEEN_TRIALS = "between_trials"
    FINISHED = "finished"


class Channel(str, Enum):
    VISUAL = "visual"
    AUDIO = "audio"


@dataclass(frozen=True)
class ChannelScore:
    correct: int = 0
    missed: int = 0
    false_alarms: int = 0

    @property
    def total(self) -> int:
        """Scored trials; correct rejections are not counted."""
        return self.correct + self.missed + self.false_alarms

    @property
    def percentage(self) -> float:
        return 0.0 if self.total == 0 else self.correct / self.total

    @property
    def percent_rounded(self) -> int:
        return round_half_up(self.percentage * 100)


@dataclass(frozen=True)
class ScoreTally:
    visual: ChannelScore
    audio: ChannelScore

    def for_channel(self, channel: Channel) -> ChannelScore:
        return self.visual if channel is Channel.VISUAL else self.audio


class ResponseLog:
    """One response slot per trial and channel, fixed size."""

    def __init__(self, size: int):
        self.size = size
        self._slots = {channel: [False] * size for channel in Channel}

    def record(self, channel: Channel, index: int) -> bool:
        """Mark a response; returns True only the first time for the slot."""
        slots = self._slots[channel]
        if slots[index]:
            return False
        slots[index] = True
        return True

    def responded(self, channel: Channel, index: int) -> bool:
        return self._slots[channel][index]

    def as_lists(self) -> dict[Channel, list[bool]]:
        return {channel: list(slots) for channel, slots in self._slots.items()}


def _score_channel(matches: Sequence[bool], responses: Sequence[bool]) -> ChannelScore:
    correct = missed = false_alarms = 0
    for is_match, responded in zip(matches, responses):
        if responded and is_match:
            correct += 1
        elif responded:
            false_alarms += 1
        elif is_match:
            missed += 1
    return ChannelScore(correct=correct, missed=missed, false_alarms=false_alarms)


def score_sequence(trials: Sequence[Trial], responses: ResponseLog) -> ScoreTally:
    if len(trials) != responses.size:
        raise ValueError(
            f"Response log holds {responses.size} trials, sequence has {len(trials)}"
        )
    log = responses.as_lists()
    return ScoreTally(
        visual=_score_channel([t.visual_match for t in trials], log[Channel.VISUAL]),
        audio=_score_channel([t.audio_match for t in trials], log[Channel.AUDIO]),
    )


class Presenter(Protocol):
    """Fire-and-forget presentation side effects; never awaited."""

    def present(self, index: int, trial: Trial) -> None: ...

    def clear(self) -> None: ...

    def finish(self, score: ScoreTally) -> None: ...


class NullPresenter:
    def present(self, index: int, trial: Trial) -> None:
        pass

    def clear(self) -> None:
        pass

    def finish(self, score: ScoreTally) -> None:
        pass


@dataclass(frozen=True)
class LifecycleSnapshot:
    """View model for the UI (pure data)."""

    phase: Phase
    trial_index: int
    total_trials: int
    trial: Optional[Trial]
    window_open: bool
    visual_responded: bool
    audio_responded: bool
    score: Optional[ScoreTally]


class TrialLifecycle:
    """
    Drives one play-through of a generated sequence.

    Phases per trial:
      1) RUNNING: stimulus shown, responses accepted until the trial timer fires
      2) BETWEEN_TRIALS: short blank pause, responses ignored
    After the last trial's timer the score is computed and the phase
    becomes FINISHED.

    Every timer callback carries the epoch it was armed in; start() and
    restart() bump the epoch, so a timer that fires late does nothing.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        presenter: Optional[Presenter] = None,
        *,
        trial_ms: int = TRIAL_MS,
        break_ms: int = BREAK_MS,
        logger: Optional[logging.Logger] = None,
    ):
        if trial_ms <= 0:
            raise ValueError(f"trial_ms must be positive, got {trial_ms}")
        if break_ms < 0:
            raise ValueError(f"break_ms must be non-negative, got {break_ms}")
        self.scheduler = scheduler
        self.presenter: Presenter = presenter or NullPresenter()
        self.trial_ms = trial_ms
        self.break_ms = break_ms
        self.logger = logger or logging.getLogger(__name__)

        self._epoch = 0
        self._timer: Optional[TimerHandle] = None
        self._reset_state()

    def _reset_state(self):
        self._phase = Phase.IDLE
        self._trials: tuple[Trial, ...] = ()
        self._responses = ResponseLog(0)
        self._index = 0
        self._window_open = False
        self._score: Optional[ScoreTally] = None

    # ---- observers ----
    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def trial_index(self) -> int:
        return self._index

    @property
    def total_trials(self) -> int:
        return len(self._trials)

    @property
    def current_trial(self) -> Optional[Trial]:
        if self._phase in (Phase.IDLE, Phase.FINISHED):
            return None
        return self._trials[self._index]

    @property
    def window_open(self) -> bool:
        return self._window_open

    @property
    def responses(self) -> dict[Channel, list[bool]]:
        return self._responses.as_lists()

    @property
    def score(self) -> Optional[ScoreTally]:
        return self._score

    def snapshot(self) -> LifecycleSnapshot:
        running = self._phase in (Phase.RUNNING, Phase.BETWEEN_TRIALS)
        return LifecycleSnapshot(
            phase=self._phase,
            trial_index=self._index,
            total_trials=self.total_trials,
            trial=self.current_trial,
            window_open=self._window_open,
            visual_responded=running
            and self._responses.responded(Channel.VISUAL, self._index),
            audio_responded=running
            and self._responses.responded(Channel.AUDIO, self._index),
            score=self._score,
        )

    # ---- commands ----
    def start(self, sequence: Sequence[Trial]) -> None:
        if not sequence:
            raise ValueError("Cannot start an empty sequence")
        self._invalidate_timer()
        self._reset_state()
        self._trials = tuple(sequence)
        self._responses = ResponseLog(len(self._trials))
        self.logger.debug("Starting play-through of %d trials", len(self._trials))
        self._begin_trial()

    def record_response(self, channel: Channel) -> bool:
        """
        Register a match response for the current trial.
        Returns True only for the first response per trial and channel;
        responses outside an open window are ignored.
        """
        if self._phase is not Phase.RUNNING or not self._window_open:
            return False
        return self._responses.record(Channel(channel), self._index)

    def on_timer_expire(self) -> None:
        """Close the current trial's window and move on."""
        if self._phase is not Phase.RUNNING:
            return
        self._window_open = False
        if self._index >= len(self._trials) - 1:
            self._finish()
            return
        self._phase = Phase.BETWEEN_TRIALS
        self.presenter.clear()
        self._arm(self.break_ms, self._on_break_expire)

    def restart(self) -> None:
        """Hard interrupt from any phase; back to IDLE with nothing kept."""
        self._invalidate_timer()
        self._reset_state()
        self.logger.debug("Restarted; state cleared")

    # ---- internals ----
    def _begin_trial(self):
        self._phase = Phase.RUNNING
        self._window_open = True
        self.presenter.present(self._index, self._trials[self._index])
        self._arm(self.trial_ms, self.on_timer_expire)

    def _on_break_expire(self):
        if self._phase is not Phase.BETWEEN_TRIALS:
            return
        self._index += 1
        self._begin_trial()

    def _finish(self):
        self._score = score_sequence(self._trials, self._responses)
        self._phase = Phase.FINISHED
        self._cancel_timer()
        self.logger.debug("Finished: %s", self._score)
        self.presenter.finish(self._score)

    def _arm(self, delay_ms: int, callback):
        self._cancel_timer()
        epoch = self._epoch

        def fire():
            if epoch != self._epoch:
                return
            self._timer = None
            callback()

        self._timer = self.scheduler.call_later(delay_ms, fire)

    def _cancel_timer(self):
        if self._timer is not None:
            self.scheduler.cancel(self._timer)
            self._timer = None

    def _invalidate_timer(self):
        self._epoch += 1
        self._cancel_timer()
