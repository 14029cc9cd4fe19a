from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from dual_n_back.main import app

runner = CliRunner()


class TestCli:
    def test_preview(self):
        result = runner.invoke(app, ["preview", "--n", "2", "--base-trials", "10", "--seed", "3"])
        assert result.exit_code == 0
        lines = result.output.rstrip().splitlines()
        # one line per trial plus the summary
        assert len(lines) >= 13
        assert lines[0].startswith("  0  (")
        assert any(line.startswith("visual ") for line in lines)

    def test_preview_is_reproducible(self):
        args = ["preview", "--seed", "5"]
        assert runner.invoke(app, args).output == runner.invoke(app, args).output

    def test_preview_invalid_configuration(self):
        result = runner.invoke(app, ["preview", "--base-trials", "0"])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_preview_rejects_large_n(self):
        result = runner.invoke(app, ["preview", "--n", "12"])
        assert result.exit_code != 0

    def test_simulate(self):
        result = runner.invoke(
            app, ["simulate", "--seed", "7", "--hit-rate", "1", "--false-alarm-rate", "0"]
        )
        assert result.exit_code == 0
        assert "Visual: correct" in result.output
        assert "missed 0, false alarms 0, score 100%" in result.output

    @patch("dual_n_back.game.DualNBackGame")
    def test_play(self, mock_game):
        result = runner.invoke(app, ["play", "--n", "3", "--seed", "1", "--trial-ms", "2000"])
        assert result.exit_code == 0
        mock_game.assert_called_once_with(
            n=3, base_trials=20, seed=1, trial_ms=2000, break_ms=100
        )
        mock_game.return_value.run.assert_called_once()

    @pytest.mark.parametrize(
        "args",
        [["--base-trials", "0"], ["--trial-ms", "0"], ["--break-ms=-5"]],
    )
    @patch("pygame.quit")
    @patch("pygame.display.set_mode")
    @patch("pygame.init")
    def test_play_invalid_configuration(self, mock_init, mock_set_mode, mock_quit, args):
        """Bad settings are reported before any window is opened."""
        result = runner.invoke(app, ["play", *args])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        mock_init.assert_not_called()
        mock_set_mode.assert_not_called()
        mock_quit.assert_called_once()
