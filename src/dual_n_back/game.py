import logging
from typing import Optional

import numpy as np
import pygame
from pygame import Rect

from dual_n_back.constants import (
    BASE_TRIALS,
    BREAK_MS,
    GRID_SIZE,
    LETTERS,
    MAX_N,
    MIN_N,
    TONE_FADE_MS,
    TONE_MS,
    TONE_VOLUME,
    TRIAL_MS,
)
from dual_n_back.lifecycle import Channel, Phase, ScoreTally, TrialLifecycle
from dual_n_back.nback import DualNBackSequence, Trial
from dual_n_back.scheduling import PygameScheduler

logger = logging.getLogger(__name__)

BACKGROUND = (20, 22, 26)
PANEL = (40, 42, 48)
BORDER = (160, 160, 170)
ACTIVE_CELL = (60, 120, 220)
TEXT = (235, 235, 235)
TEXT_DIM = (200, 200, 200)


# -------------------- Utilities --------------------
def make_tone(
    frequency: float, duration_ms: int, volume: float, fade_ms: int = TONE_FADE_MS
) -> pygame.mixer.Sound:
    """
    Letter tone: a sine at `frequency` with linear fade-in and fade-out so
    back-to-back trials don't click. Assumes the mixer is initialized.
    """
    init = pygame.mixer.get_init()
    if init is None:
        raise RuntimeError("pygame.mixer not initialized")
    sample_rate, _fmt, channels = init
    if channels not in (1, 2):
        raise ValueError(f"Unsupported mixer channels: {channels}")

    n_samples = int(sample_rate * duration_ms / 1000)
    t = np.arange(n_samples, dtype=np.float64) / sample_rate
    envelope = np.ones(n_samples)
    n_fade = min(n_samples // 2, int(sample_rate * fade_ms / 1000))
    if n_fade > 0:
        ramp = np.linspace(0.0, 1.0, n_fade, endpoint=False)
        envelope[:n_fade] = ramp
        envelope[n_samples - n_fade :] = ramp[::-1]

    wave = 0.5 * np.sin(2.0 * np.pi * float(frequency) * t) * envelope
    mono = (wave * (2**15 - 1)).astype(np.int16)
    pcm = mono if channels == 1 else np.column_stack((mono, mono))

    snd = pygame.sndarray.make_sound(np.ascontiguousarray(pcm))
    snd.set_volume(max(0.0, min(1.0, float(volume))))
    return snd


def letter_frequency(letter: str, alphabet: tuple[str, ...] = LETTERS) -> float:
    """
    Pitch for a letter: semitone steps up from A4, two semitones apart
    so neighbouring letters stay easy to tell apart by ear.
    """
    index = alphabet.index(letter)
    return 440.0 * 2 ** (2 * index / 12)


def clamp_n(n: int) -> int:
    return max(MIN_N, min(MAX_N, n))


# -------------------- Presenter --------------------
class PygamePresenter:
    """
    Reacts to lifecycle transitions: remembers what to draw and plays
    the letter's tone. Drawing happens in the game loop.
    """

    def __init__(
        self,
        alphabet: tuple[str, ...] = LETTERS,
        *,
        tone_ms: int = TONE_MS,
        volume: float = TONE_VOLUME,
    ):
        if tone_ms <= 0:
            raise ValueError(f"tone_ms must be positive, got {tone_ms}")
        self.alphabet = alphabet
        self.tone_ms = tone_ms
        self.volume = volume
        self.trial: Optional[Trial] = None
        self.score: Optional[ScoreTally] = None
        self._tones: dict[str, pygame.mixer.Sound] = {}

    def _tone(self, letter: str) -> pygame.mixer.Sound:
        # One Sound per letter, synthesised on first use.
        if letter not in self._tones:
            self._tones[letter] = make_tone(
                letter_frequency(letter, self.alphabet), self.tone_ms, self.volume
            )
        return self._tones[letter]

    def present(self, index: int, trial: Trial) -> None:
        self.trial = trial
        self.score = None
        self._tone(trial.letter).play()

    def clear(self) -> None:
        self.trial = None

    def finish(self, score: ScoreTally) -> None:
        self.trial = None
        self.score = score

    def reset(self) -> None:
        pygame.mixer.stop()
        self.trial = None
        self.score = None


# -------------------- Game --------------------
class DualNBackGame:
    """
    Pygame front end. Keys:
      A      position match
      L      letter match
      Space  restart with a fresh sequence
      Esc    quit
    """

    def __init__(
        self,
        *,
        n: int = 2,
        base_trials: int = BASE_TRIALS,
        seed: Optional[int] = None,
        trial_ms: int = TRIAL_MS,
        break_ms: int = BREAK_MS,
        grid_size: int = GRID_SIZE,
        window_size=(640, 720),
    ):
        self.n = clamp_n(n)
        self.base_trials = base_trials
        self.grid_size = grid_size
        self.seed = seed

        # Bad configuration raises here, before any window exists.
        self.scheduler = PygameScheduler()
        self.presenter = PygamePresenter()
        self.lifecycle = TrialLifecycle(
            self.scheduler, self.presenter, trial_ms=trial_ms, break_ms=break_ms
        )
        # Seeded once; restarts continue the same random stream.
        self.generator = DualNBackSequence(
            self.n, self.base_trials + self.n, self.grid_size, seed=seed
        )

        # Pygame
        pygame.init()
        pygame.mixer.init(frequency=44100, size=-16, channels=2, buffer=512)
        self.screen = pygame.display.set_mode(window_size)
        pygame.display.set_caption("Dual N-Back")
        self.clock = pygame.time.Clock()
        self.font_big = pygame.font.SysFont(None, 48)
        self.font_small = pygame.font.SysFont(None, 28)

    def new_game(self):
        self.lifecycle.restart()
        self.presenter.reset()
        result = self.generator.generate()
        if result.degraded:
            logger.info("Playing a best-effort sequence after %d attempts", result.attempts)
        self.lifecycle.start(result.trials)

    # ---- layout ----
    def _grid_rect(self) -> Rect:
        W, H = self.screen.get_size()
        side = min(W - 80, H - 280)
        return Rect((W - side) // 2, 110, side, side)

    def _cell_rect(self, grid: Rect, row: int, col: int) -> Rect:
        cell = grid.w // self.grid_size
        return Rect(grid.x + col * cell + 4, grid.y + row * cell + 4, cell - 8, cell - 8)

    # ---- rendering ----
    def _draw_header(self):
        snap = self.lifecycle.snapshot()
        hdr = self.font_big.render(
            f"N = {self.n}   Trial {snap.trial_index + 1}/{snap.total_trials}",
            True,
            TEXT,
        )
        self.screen.blit(hdr, (24, 24))
        tip = self.font_small.render(
            "A: position match   L: letter match   Space: restart", True, TEXT_DIM
        )
        self.screen.blit(tip, (24, 70))

    def _draw_grid(self):
        grid = self._grid_rect()
        trial = self.presenter.trial
        for row in range(self.grid_size):
            for col in range(self.grid_size):
                rect = self._cell_rect(grid, row, col)
                active = (
                    trial is not None
                    and trial.position.row == row
                    and trial.position.col == col
                )
                pygame.draw.rect(
                    self.screen, ACTIVE_CELL if active else PANEL, rect, border_radius=8
                )
                pygame.draw.rect(self.screen, BORDER, rect, width=2, border_radius=8)
        if trial is not None:
            letter = self.font_big.render(trial.letter.upper(), True, TEXT)
            self.screen.blit(
                letter, letter.get_rect(center=(grid.centerx, grid.bottom + 20))
            )

    def _draw_indicators(self):
        snap = self.lifecycle.snapshot()
        W, H = self.screen.get_size()
        for label, pressed, x in (
            ("Position (A)", snap.visual_responded, W // 4),
            ("Letter (L)", snap.audio_responded, 3 * W // 4),
        ):
            rect = Rect(0, 0, W // 2 - 40, 70)
            rect.center = (x, H - 70)
            fill = (40, 160, 90) if pressed else PANEL
            pygame.draw.rect(self.screen, fill, rect, border_radius=12)
            pygame.draw.rect(self.screen, BORDER, rect, width=2, border_radius=12)
            txt = self.font_small.render(label, True, TEXT)
            self.screen.blit(txt, txt.get_rect(center=rect.center))

    def _draw_results(self, score: ScoreTally):
        W, _H = self.screen.get_size()
        y = 80
        title = self.font_big.render("Results", True, TEXT)
        self.screen.blit(title, title.get_rect(center=(W // 2, y)))
        y += 60
        for channel, label in ((Channel.VISUAL, "Visual (Position)"), (Channel.AUDIO, "Audio (Letter)")):
            s = score.for_channel(channel)
            lines = [
                label,
                f"Correct Matches: {s.correct}",
                f"Missed Matches: {s.missed}",
                f"False Alarms: {s.false_alarms}",
                f"Score: {s.percent_rounded}%",
            ]
            for i, line in enumerate(lines):
                font = self.font_big if i == 0 else self.font_small
                surf = font.render(line, True, TEXT if i == 0 else TEXT_DIM)
                self.screen.blit(surf, surf.get_rect(center=(W // 2, y)))
                y += 44 if i == 0 else 32
            y += 24
        tip = self.font_small.render(
            "Space to play again, Esc to exit.", True, TEXT_DIM
        )
        self.screen.blit(tip, tip.get_rect(center=(W // 2, y + 20)))

    def _draw(self):
        self.screen.fill(BACKGROUND)
        if self.lifecycle.phase is Phase.FINISHED and self.lifecycle.score is not None:
            self._draw_results(self.lifecycle.score)
        else:
            self._draw_header()
            self._draw_grid()
            self._draw_indicators()
        pygame.display.flip()

    # ---- main loop ----
    def run(self):
        self.new_game()
        running = True
        while running:
            for event in pygame.event.get():
                if event.type == pygame.QUIT:
                    running = False
                elif event.type == pygame.KEYDOWN:
                    if event.key == pygame.K_ESCAPE:
                        running = False
                    elif event.key == pygame.K_a:
                        self.lifecycle.record_response(Channel.VISUAL)
                    elif event.key == pygame.K_l:
                        self.lifecycle.record_response(Channel.AUDIO)
                    elif event.key == pygame.K_SPACE:
                        self.new_game()

            # Timers fire here, between input batches, never concurrently.
            self.scheduler.poll()
            self._draw()
            self.clock.tick(120)

        self.lifecycle.restart()
        pygame.quit()
