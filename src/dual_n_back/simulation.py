import random
from dataclasses import dataclass
from typing import Optional, Sequence

from dual_n_back.constants import BREAK_MS, TRIAL_MS
from dual_n_back.lifecycle import Channel, Phase, ScoreTally, TrialLifecycle
from dual_n_back.nback import Trial
from dual_n_back.scheduling import ManualScheduler


@dataclass
class ScriptedParticipant:
    """
    Responds to each trial with fixed probabilities:
    hit_rate on a true match, false_alarm_rate otherwise.
    """

    hit_rate: float = 1.0
    false_alarm_rate: float = 0.0
    presses_per_response: int = 1
    rng: Optional[random.Random] = None

    def __post_init__(self):
        for name, value in (
            ("hit_rate", self.hit_rate),
            ("false_alarm_rate", self.false_alarm_rate),
        ):
            if not 0 <= value <= 1:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")
        if self.presses_per_response < 1:
            raise ValueError("presses_per_response must be positive")
        if self.rng is None:
            self.rng = random.Random()

    def responses_for(self, trial: Trial) -> list[Channel]:
        channels = []
        for channel, is_match in (
            (Channel.VISUAL, trial.visual_match),
            (Channel.AUDIO, trial.audio_match),
        ):
            chance = self.hit_rate if is_match else self.false_alarm_rate
            if self.rng.random() < chance:
                channels.append(channel)
        return channels


def run_headless(
    trials: Sequence[Trial],
    participant: ScriptedParticipant,
    *,
    trial_ms: int = TRIAL_MS,
    break_ms: int = BREAK_MS,
) -> ScoreTally:
    """Play a whole sequence on a virtual clock and return the final tally."""
    scheduler = ManualScheduler()
    lifecycle = TrialLifecycle(scheduler, trial_ms=trial_ms, break_ms=break_ms)
    lifecycle.start(trials)

    while lifecycle.phase is not Phase.FINISHED:
        trial = lifecycle.current_trial
        if trial is not None and lifecycle.window_open:
            for channel in participant.responses_for(trial):
                for _ in range(participant.presses_per_response):
                    lifecycle.record_response(channel)
        # One trial plus its pause; the next trial's timer is due later.
        scheduler.advance(trial_ms + break_ms)

    assert lifecycle.score is not None
    return lifecycle.score
