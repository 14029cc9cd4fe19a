from unittest.mock import MagicMock, patch

import pytest

from dual_n_back.scheduling import ManualScheduler, PygameScheduler, _HeapScheduler


class TestManualScheduler:
    def test_fires_in_due_order(self):
        scheduler = ManualScheduler()
        fired = []
        scheduler.call_later(300, lambda: fired.append("b"))
        scheduler.call_later(100, lambda: fired.append("a"))
        scheduler.call_later(300, lambda: fired.append("c"))

        assert scheduler.advance(99) == 0
        assert scheduler.advance(1) == 1
        assert fired == ["a"]
        assert scheduler.advance(500) == 2
        assert fired == ["a", "b", "c"]
        assert scheduler.now_ms() == 600

    def test_cancel(self):
        scheduler = ManualScheduler()
        callback = MagicMock()
        handle = scheduler.call_later(10, callback)
        assert scheduler.pending == 1

        scheduler.cancel(handle)

        assert scheduler.pending == 0
        scheduler.advance(100)
        callback.assert_not_called()

    def test_callbacks_can_schedule_callbacks(self):
        """
        A timer armed from inside a callback fires in the same advance()
        if it falls due before the target time, at its own due time.
        """
        scheduler = ManualScheduler()
        seen = []

        def first():
            seen.append(("first", scheduler.now_ms()))
            scheduler.call_later(50, lambda: seen.append(("second", scheduler.now_ms())))

        scheduler.call_later(100, first)
        scheduler.advance(200)

        assert seen == [("first", 100), ("second", 150)]
        assert scheduler.now_ms() == 200

    def test_run_until_idle(self):
        scheduler = ManualScheduler(start_ms=1000)
        count = []

        def tick():
            count.append(scheduler.now_ms())
            if len(count) < 3:
                scheduler.call_later(10, tick)

        scheduler.call_later(0, tick)

        assert scheduler.run_until_idle() == 3
        assert count == [1000, 1010, 1020]
        assert scheduler.pending == 0

    def test_run_until_idle_limit(self):
        scheduler = ManualScheduler()

        def forever():
            scheduler.call_later(1, forever)

        scheduler.call_later(1, forever)
        with pytest.raises(RuntimeError):
            scheduler.run_until_idle(limit=20)

    def test_negative_delay(self):
        with pytest.raises(ValueError):
            ManualScheduler().call_later(-1, lambda: None)


class TestHeapScheduler:
    def test_base_needs_a_clock(self):
        with pytest.raises(TypeError):
            _HeapScheduler()

    def test_subclass_supplies_clock(self):
        class FixedClock(_HeapScheduler):
            def now_ms(self):
                return 500

        scheduler = FixedClock()
        handle = scheduler.call_later(100, lambda: None)
        assert handle.due_ms == 600
        assert scheduler.pending == 1


class TestPygameScheduler:
    @patch("pygame.time.get_ticks")
    def test_poll_fires_due_timers(self, mock_ticks):
        mock_ticks.return_value = 1000
        scheduler = PygameScheduler()
        callback = MagicMock()
        scheduler.call_later(3000, callback)

        mock_ticks.return_value = 3999
        assert scheduler.poll() == 0
        callback.assert_not_called()

        mock_ticks.return_value = 4000
        assert scheduler.poll() == 1
        callback.assert_called_once()
        assert scheduler.pending == 0
