"""Progress tracker tests."""
import asyncio
import threading
from datetime import timedelta

import pytest

from blueprint_engine.monitoring.progress import GenerationStatus, ProgressTracker
from blueprint_engine.reliability.errors import ErrorCode, make_error


def test_update_creates_and_merges(clock):
    """Partial updates merge into existing state."""
    tracker = ProgressTracker(clock=clock)

    tracker.update_progress("gen-1", status=GenerationStatus.RUNNING, current_step="Starting", percentage=5)
    tracker.update_progress("gen-1", percentage=30)

    progress = tracker.get_progress("gen-1")
    assert progress.status == GenerationStatus.RUNNING
    assert progress.current_step == "Starting"
    assert progress.percentage == 30


def test_percentage_never_goes_backwards_within_a_run(clock):
    """Lower percentages during a run are ignored."""
    tracker = ProgressTracker(clock=clock)
    tracker.update_progress("gen-1", status=GenerationStatus.RUNNING, percentage=54)

    tracker.update_progress("gen-1", current_step="late update", percentage=30)

    progress = tracker.get_progress("gen-1")
    assert progress.percentage == 54
    assert progress.current_step == "late update"


def test_percentage_is_clamped(clock):
    """Percentages stay within 0..100."""
    tracker = ProgressTracker(clock=clock)

    assert tracker.update_progress("gen-1", percentage=250).percentage == 100


def test_failure_keeps_last_percentage_and_error(clock):
    """A failed run holds its last percentage and carries the error."""
    tracker = ProgressTracker(clock=clock)
    tracker.update_progress("gen-1", status=GenerationStatus.RUNNING, percentage=42)
    error = make_error(ErrorCode.AI_SERVICE_TIMEOUT)

    tracker.update_progress("gen-1", status=GenerationStatus.FAILED, error=error)

    progress = tracker.get_progress("gen-1")
    assert progress.status == GenerationStatus.FAILED
    assert progress.percentage == 42
    assert progress.error is error
    assert progress.is_terminal


def test_new_run_after_terminal_state_resets(clock):
    """Restarting a finished generation begins a fresh run."""
    tracker = ProgressTracker(clock=clock)
    tracker.update_progress("gen-1", status=GenerationStatus.RUNNING, percentage=42)
    tracker.update_progress("gen-1", status=GenerationStatus.FAILED, error=make_error(ErrorCode.GENERATION_FAILED))

    progress = tracker.update_progress("gen-1", status=GenerationStatus.RUNNING, percentage=5)

    assert progress.percentage == 5
    assert progress.error is None


def test_clear_progress_makes_get_return_none(clock):
    """Cleared entries are gone."""
    tracker = ProgressTracker(clock=clock)
    tracker.update_progress("gen-1", percentage=10)

    tracker.clear_progress("gen-1")

    assert tracker.get_progress("gen-1") is None
    assert tracker.get_progress("never-seen") is None


def test_observers_are_notified_and_isolated(clock):
    """Observers see each update; a failing observer does not break updates."""
    tracker = ProgressTracker(clock=clock)
    seen = []

    def broken(progress):
        raise RuntimeError("push channel down")

    tracker.subscribe(broken)
    unsubscribe = tracker.subscribe(lambda progress: seen.append(progress.percentage))

    tracker.update_progress("gen-1", percentage=10)
    tracker.update_progress("gen-1", percentage=20)
    unsubscribe()
    tracker.update_progress("gen-1", percentage=30)

    assert seen == [10, 20]


def test_sweep_removes_stale_entries(clock):
    """Entries untouched for max_age seconds are swept."""
    tracker = ProgressTracker(max_age=3600, clock=clock)
    tracker.update_progress("old", percentage=10)
    clock.advance(1800)
    tracker.update_progress("fresh", percentage=10)
    clock.advance(1800)

    assert tracker.sweep() == 1
    assert tracker.get_progress("old") is None
    assert tracker.get_progress("fresh") is not None


def test_concurrent_updates_stay_monotonic(clock):
    """Concurrent writers cannot move a generation backwards."""
    tracker = ProgressTracker(clock=clock)
    tracker.update_progress("gen-1", status=GenerationStatus.RUNNING)

    def writer(values):
        for value in values:
            tracker.update_progress("gen-1", percentage=value)

    threads = [
        threading.Thread(target=writer, args=(range(0, 100, 2),)),
        threading.Thread(target=writer, args=(range(99, 0, -3),)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert tracker.get_progress("gen-1").percentage == 99


@pytest.mark.asyncio
async def test_background_sweeper_starts_and_stops(clock):
    """The sweeper runs periodically until stopped."""
    tracker = ProgressTracker(max_age=10, sweep_interval=0.01, clock=clock)
    tracker.update_progress("gen-1", percentage=10)
    clock.advance(11)

    await tracker.start_sweeper()
    await asyncio.sleep(0.05)
    await tracker.stop_sweeper()

    assert tracker.get_progress("gen-1") is None
    assert not tracker.is_running


def test_stats_list_only_active_generations(clock):
    """Terminal generations are tracked but not reported as active."""
    tracker = ProgressTracker(clock=clock)
    tracker.update_progress("running", status=GenerationStatus.RUNNING, percentage=40)
    tracker.update_progress("done", status=GenerationStatus.COMPLETED, percentage=100)

    stats = tracker.get_stats()

    assert tracker.active_generations() == ["running"]
    assert stats["tracked"] == 2
    assert stats["active"] == 1
    assert stats["active_generations"] == ["running"]
    assert not stats["sweeper_running"]


def test_updates_carry_utc_timestamps(clock):
    """Progress timestamps are timezone-aware UTC."""
    tracker = ProgressTracker(clock=clock)

    progress = tracker.update_progress("gen-1", percentage=10)

    assert progress.updated_at.utcoffset() == timedelta(0)
