import logging
import math
import random
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, TypeVar, Union

from dual_n_back.constants import (
    BOTH_RATE,
    CHANCE_OF_GUARANTEED_MATCH,
    CHANCE_OF_INTERFERENCE,
    GRID_SIZE,
    LETTERS,
    MATCH_RATE,
    MAX_ATTEMPTS,
    MAX_BOTH_MATCHES,
)

T = TypeVar("T")


class InvalidConfiguration(ValueError):
    """Generator parameters that cannot produce a valid sequence."""


@dataclass(frozen=True)
class Position:
    row: int
    col: int


@dataclass(frozen=True)
class Trial:
    position: Position
    letter: str
    visual_match: bool = False
    audio_match: bool = False
    visual_lure: bool = False
    audio_lure: bool = False
    # Distance back of the trial a lure copies; None unless the lure flag is set.
    visual_lure_offset: Optional[int] = None
    audio_lure_offset: Optional[int] = None

    @property
    def both_match(self) -> bool:
        return self.visual_match and self.audio_match


@dataclass(frozen=True)
class MatchTargets:
    visual: int
    audio: int
    both: int


@dataclass(frozen=True)
class Exact:
    """Sequence whose realised match counts equal the targets."""

    trials: tuple[Trial, ...]
    attempts: int

    @property
    def degraded(self) -> bool:
        return False


@dataclass(frozen=True)
class BestEffort:
    """
    The attempt budget ran out before the targets were hit.
    The trials are still valid (flags agree with the stimuli),
    only the match statistics are off.
    """

    trials: tuple[Trial, ...]
    attempts: int

    @property
    def degraded(self) -> bool:
        return True


GenerationResult = Union[Exact, BestEffort]


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def compute_targets(
    remaining: int, match_rate: float = MATCH_RATE, both_rate: float = BOTH_RATE
) -> MatchTargets:
    """
    Match targets for the `remaining` non-seed trials.
    The both-target is part of the visual and audio targets,
    not on top of them.
    """
    return MatchTargets(
        visual=round_half_up(remaining * match_rate),
        audio=round_half_up(remaining * match_rate),
        both=min(MAX_BOTH_MATCHES, math.floor(remaining * both_rate)),
    )


def count_matches(trials: Iterable[Trial]) -> MatchTargets:
    visual = audio = both = 0
    for trial in trials:
        visual += trial.visual_match
        audio += trial.audio_match
        both += trial.both_match
    return MatchTargets(visual=visual, audio=audio, both=both)


class DualNBackSequence:
    """
    Generator for a dual (position + letter) N-back sequence.

    The first n trials are seeds with nothing to compare against.
    The remaining trials are rebuilt from scratch until the number of
    position matches, letter matches and simultaneous matches equal
    their targets, or the attempt budget runs out.

    Each channel decides per trial, in order:
      1. match (forced when the target can no longer be reached otherwise,
         or opportunistically so matches spread out),
      2. lure (copy the stimulus from n-1 or n+1 back, if that is not
         also the n-back stimulus),
      3. clean non-match (random, resampled until it differs from n-back).
    """

    def __init__(
        self,
        n: int,
        total_trials: int,
        grid_size: int = GRID_SIZE,
        alphabet: Iterable[str] = LETTERS,
        *,
        rng: Optional[random.Random] = None,
        seed: Optional[int] = None,
        match_rate: float = MATCH_RATE,
        both_rate: float = BOTH_RATE,
        max_attempts: int = MAX_ATTEMPTS,
        guaranteed_match_chance: float = CHANCE_OF_GUARANTEED_MATCH,
        interference_chance: float = CHANCE_OF_INTERFERENCE,
        logger: Optional[logging.Logger] = None,
    ):
        self.alphabet = tuple(dict.fromkeys(alphabet))

        if n < 1:
            raise InvalidConfiguration(f"n must be at least 1, got {n}")
        if total_trials <= n:
            raise InvalidConfiguration(
                f"total_trials ({total_trials}) must be greater than n ({n})"
            )
        if grid_size < 2:
            raise InvalidConfiguration(f"grid_size must be at least 2, got {grid_size}")
        if len(self.alphabet) < 2:
            raise InvalidConfiguration(
                f"alphabet needs at least 2 distinct letters, got {len(self.alphabet)}"
            )
        for name, value in (
            ("match_rate", match_rate),
            ("both_rate", both_rate),
            ("guaranteed_match_chance", guaranteed_match_chance),
            ("interference_chance", interference_chance),
        ):
            if not 0 <= value <= 1:
                raise InvalidConfiguration(f"{name} must be between 0 and 1, got {value}")
        if max_attempts < 1:
            raise InvalidConfiguration(f"max_attempts must be positive, got {max_attempts}")

        self.n = n
        self.total_trials = total_trials
        self.grid_size = grid_size
        self.match_rate = match_rate
        self.both_rate = both_rate
        self.max_attempts = max_attempts
        self.guaranteed_match_chance = guaranteed_match_chance
        self.interference_chance = interference_chance
        self.rng = rng if rng is not None else random.Random(seed)
        self.logger = logger or logging.getLogger(__name__)

        self.targets = compute_targets(total_trials - n, match_rate, both_rate)
        self.result: Optional[GenerationResult] = None

    def __len__(self) -> int:
        return self.total_trials

    def __iter__(self) -> Iterator[Trial]:
        """
        Iterate over the most recently generated trials,
        generating a sequence first if there is none yet.
        """
        if self.result is None:
            self.generate()
        assert self.result is not None
        yield from self.result.trials

    # ---- generation ----
    def generate(self) -> GenerationResult:
        positions = [self._draw_position() for _ in range(self.n)]
        letters = [self._draw_letter() for _ in range(self.n)]

        trials: list[Trial] = []
        realised = MatchTargets(0, 0, 0)
        attempts = 0
        while attempts < self.max_attempts:
            attempts += 1
            trials = self._attempt(list(positions), list(letters))
            realised = count_matches(trials)
            if realised == self.targets:
                break

        self.logger.debug(
            "Generated %d visual, %d audio, %d both matches in %d attempt(s)",
            realised.visual,
            realised.audio,
            realised.both,
            attempts,
        )
        if realised == self.targets:
            self.result = Exact(tuple(trials), attempts)
        else:
            self.logger.warning(
                "Could not hit match targets %s after %d attempts; got %s",
                self.targets,
                attempts,
                realised,
            )
            self.result = BestEffort(tuple(trials), attempts)
        return self.result

    def _attempt(self, positions: list[Position], letters: list[str]) -> list[Trial]:
        """Extend the seed histories to full length and stamp the flags."""
        targets = self.targets
        visual_lures: dict[int, int] = {}
        audio_lures: dict[int, int] = {}
        visual = audio = both = 0

        for i in range(self.n, self.total_trials):
            remaining = self.total_trials - i
            position, visual_match, visual_lure = self._pick(
                positions, i, visual, targets.visual, remaining, self._draw_position
            )
            letter, audio_match, audio_lure = self._pick(
                letters, i, audio, targets.audio, remaining, self._draw_letter
            )
            visual += visual_match
            audio += audio_match

            if visual_match and audio_match:
                both += 1
                if both > targets.both:
                    # Without slack on either channel this stays a both-match
                    # and the attempt is thrown away by the caller.
                    if self.rng.random() < 0.5 and visual > 1:
                        position = self._non_match(positions[i - self.n], self._draw_position)
                        visual_match = False
                        visual -= 1
                        both -= 1
                    elif audio > 1:
                        letter = self._non_match(letters[i - self.n], self._draw_letter)
                        audio_match = False
                        audio -= 1
                        both -= 1

            already_both = visual_match and audio_match
            if (
                not already_both
                and both < targets.both
                and i >= self.total_trials - (targets.both - both) * 2
            ):
                position = positions[i - self.n]
                letter = letters[i - self.n]
                visual += not visual_match
                audio += not audio_match
                visual_match = audio_match = True
                visual_lure = audio_lure = None
                both += 1

            positions.append(position)
            letters.append(letter)
            if visual_lure is not None:
                visual_lures[i] = visual_lure
            if audio_lure is not None:
                audio_lures[i] = audio_lure

        return self._stamp(positions, letters, visual_lures, audio_lures)

    def _pick(
        self,
        history: list[T],
        i: int,
        matches: int,
        target: int,
        remaining: int,
        draw: Callable[[], T],
    ) -> tuple[T, bool, Optional[int]]:
        """Choose one channel's stimulus: (value, is_match, lure_offset)."""
        back = history[i - self.n]
        needed = target - matches
        if needed > 0 and (
            needed >= remaining or self.rng.random() < self.guaranteed_match_chance
        ):
            return back, True, None

        if self.rng.random() < self.interference_chance:
            offsets = self._lure_offsets(i)
            if offsets:
                offset = self.rng.choice(offsets)
                lure = history[i - offset]
                # A lure equal to the n-back value would be a silent match.
                if lure != back:
                    return lure, False, offset

        return self._non_match(back, draw), False, None

    def _lure_offsets(self, i: int) -> list[int]:
        return [d for d in (self.n - 1, self.n + 1) if d >= 1 and i - d >= 0]

    def _non_match(self, back: T, draw: Callable[[], T]) -> T:
        value = draw()
        while value == back:
            value = draw()
        return value

    def _stamp(
        self,
        positions: list[Position],
        letters: list[str],
        visual_lures: dict[int, int],
        audio_lures: dict[int, int],
    ) -> list[Trial]:
        """Build trials with flags taken from the literal n-back comparison."""
        trials = []
        for i, (position, letter) in enumerate(zip(positions, letters)):
            visual_match = i >= self.n and position == positions[i - self.n]
            audio_match = i >= self.n and letter == letters[i - self.n]
            visual_lure = visual_lures.get(i) if not visual_match else None
            audio_lure = audio_lures.get(i) if not audio_match else None
            trials.append(
                Trial(
                    position=position,
                    letter=letter,
                    visual_match=visual_match,
                    audio_match=audio_match,
                    visual_lure=visual_lure is not None,
                    audio_lure=audio_lure is not None,
                    visual_lure_offset=visual_lure,
                    audio_lure_offset=audio_lure,
                )
            )
        return trials

    def _draw_position(self) -> Position:
        return Position(
            self.rng.randrange(self.grid_size), self.rng.randrange(self.grid_size)
        )

    def _draw_letter(self) -> str:
        return self.rng.choice(self.alphabet)


def generate(
    n: int,
    total_trials: int,
    grid_size: int = GRID_SIZE,
    alphabet: Iterable[str] = LETTERS,
    **kwargs,
) -> GenerationResult:
    """Generate one dual n-back sequence; see DualNBackSequence for options."""
    return DualNBackSequence(n, total_trials, grid_size, alphabet, **kwargs).generate()
