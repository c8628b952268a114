"""
Tests for the watch-mode runner.
"""

import threading

import pytest

from tmevents.scheduler import PeriodicRunner
from tmevents.upstream.http import UpstreamError


class TestPeriodicRunner:
    """Tests for PeriodicRunner."""

    def test_run_once(self):
        calls = []
        runner = PeriodicRunner(lambda: calls.append(1), interval_s=60)
        assert runner.run_once() is True
        assert calls == [1]

    def test_overlapping_tick_skipped(self):
        entered = threading.Event()
        release = threading.Event()
        calls = []

        def slow():
            calls.append(1)
            entered.set()
            release.wait(5)

        runner = PeriodicRunner(slow, interval_s=60)
        worker = threading.Thread(target=runner.run_once)
        worker.start()
        assert entered.wait(5)

        assert runner.run_once() is False
        release.set()
        worker.join()
        assert calls == [1]

    def test_initial_pass_errors_propagate(self):
        def boom():
            raise UpstreamError("refresh failed: 401")

        runner = PeriodicRunner(boom, interval_s=0.01)
        with pytest.raises(UpstreamError):
            runner.run_forever()

    def test_tick_errors_logged_and_loop_continues(self):
        calls = []

        def task():
            calls.append(1)
            if len(calls) == 2:
                raise UpstreamError("temporary")
            if len(calls) >= 4:
                runner.stop()

        runner = PeriodicRunner(task, interval_s=0.001)
        runner.run_forever()
        assert len(calls) == 4
        assert runner.stopped

    def test_unexpected_tick_error_keeps_watching(self, caplog):
        calls = []

        def task():
            calls.append(1)
            if len(calls) == 2:
                raise KeyError("tops")
            if len(calls) == 3:
                raise TypeError("'>' not supported")
            if len(calls) >= 4:
                runner.stop()

        runner = PeriodicRunner(task, interval_s=0.001, name="watch")
        runner.run_forever()
        assert len(calls) == 4
        failures = [r for r in caplog.records if "[watch] pass failed" in r.getMessage()]
        assert [r.exc_info[0] for r in failures] == [KeyError, TypeError]

    def test_initial_unexpected_error_propagates(self):
        def task():
            raise KeyError("tops")

        with pytest.raises(KeyError):
            PeriodicRunner(task, interval_s=0.001).run_forever()

    def test_stop_before_first_interval(self):
        calls = []
        runner = PeriodicRunner(lambda: calls.append(1), interval_s=60)
        runner.stop()
        runner.run_forever()
        assert calls == [1]

    def test_passes_run_sequentially_on_calling_thread(self):
        threads = []

        def task():
            threads.append(threading.get_ident())
            if len(threads) >= 3:
                runner.stop()

        runner = PeriodicRunner(task, interval_s=0.001)
        runner.run_forever()
        assert threads == [threading.get_ident()] * 3
