import logging
import random

import typer

from dual_n_back.constants import (
    BASE_TRIALS,
    BREAK_MS,
    GRID_SIZE,
    MAX_N,
    MIN_N,
    TRIAL_MS,
)
from dual_n_back.nback import DualNBackSequence, InvalidConfiguration, count_matches
from dual_n_back.simulation import ScriptedParticipant, run_headless

app = typer.Typer()


def _build_sequence(n: int, base_trials: int, grid_size: int, seed: int | None):
    try:
        return DualNBackSequence(n, base_trials + n, grid_size, seed=seed)
    except InvalidConfiguration as e:
        print(f"Invalid configuration: {e}")
        raise typer.Exit(code=1)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v")):
    """
    Dual n-back: remember positions and letters from N trials back.
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


@app.command()
def play(
    n: int = typer.Option(2, min=MIN_N, max=MAX_N),
    base_trials: int = BASE_TRIALS,
    trial_ms: int = TRIAL_MS,
    break_ms: int = BREAK_MS,
    seed: int | None = None,
):
    """
    Run the dual n-back game (A: position match, L: letter match).
    """
    import pygame

    from dual_n_back.game import DualNBackGame

    try:
        game = DualNBackGame(
            n=n,
            base_trials=base_trials,
            seed=seed,
            trial_ms=trial_ms,
            break_ms=break_ms,
        )
    except ValueError as e:
        pygame.quit()
        print(f"Invalid configuration: {e}")
        raise typer.Exit(code=1)
    game.run()


@app.command()
def preview(
    n: int = typer.Option(2, min=MIN_N, max=MAX_N),
    base_trials: int = BASE_TRIALS,
    grid_size: int = GRID_SIZE,
    seed: int | None = None,
):
    """
    Print a generated sequence with its matches and lures.
    """
    sequence = _build_sequence(n, base_trials, grid_size, seed)
    result = sequence.generate()

    for i, trial in enumerate(result.trials):
        marks = []
        if trial.visual_match:
            marks.append("V")
        if trial.audio_match:
            marks.append("A")
        if trial.visual_lure:
            marks.append(f"v~{trial.visual_lure_offset}")
        if trial.audio_lure:
            marks.append(f"a~{trial.audio_lure_offset}")
        pos = f"({trial.position.row},{trial.position.col})"
        print(f"{i:3d}  {pos}  {trial.letter}  {' '.join(marks)}")

    realised = count_matches(result.trials)
    targets = sequence.targets
    print(
        f"visual {realised.visual}/{targets.visual}  "
        f"audio {realised.audio}/{targets.audio}  "
        f"both {realised.both}/{targets.both}  "
        f"attempts {result.attempts}"
    )
    if result.degraded:
        print("Warning: match targets not reached (best-effort sequence)")


@app.command()
def simulate(
    n: int = typer.Option(2, min=MIN_N, max=MAX_N),
    base_trials: int = BASE_TRIALS,
    seed: int | None = None,
    hit_rate: float = typer.Option(0.8, min=0.0, max=1.0),
    false_alarm_rate: float = typer.Option(0.1, min=0.0, max=1.0),
):
    """
    Play a sequence headlessly with a scripted participant and print the score.
    """
    sequence = _build_sequence(n, base_trials, GRID_SIZE, seed)
    result = sequence.generate()
    participant = ScriptedParticipant(
        hit_rate=hit_rate,
        false_alarm_rate=false_alarm_rate,
        rng=random.Random(seed),
    )
    score = run_headless(result.trials, participant)

    for label, s in (("Visual", score.visual), ("Audio", score.audio)):
        print(
            f"{label}: correct {s.correct}, missed {s.missed}, "
            f"false alarms {s.false_alarms}, score {s.percent_rounded}%"
        )


if __name__ == "__main__":
    app()
