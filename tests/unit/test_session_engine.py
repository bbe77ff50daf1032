"""Unit tests for SessionEngine."""

import asyncio

import pytest

from breathe.config import BreatheConfig
from breathe.models.session import BreathingPattern, ElapsedPolicy, SessionPhase
from breathe.services.session_engine import SessionEngine
from tests.conftest import FakeAudioInput, FakeHaptics, FakeRecorder, ManualClock


def make_engine(clock, recorder, audio=None, **kwargs):
    factory = (lambda: audio) if audio is not None else None
    return SessionEngine(recorder, clock=clock, audio_input_factory=factory, **kwargs)


async def start(engine, clock, minutes=1, **kwargs):
    """Run prepare_and_start through the 3 second countdown."""
    task = asyncio.ensure_future(engine.prepare_and_start(minutes, **kwargs))
    await clock.advance(3000)
    assert task.done()
    assert task.result() is True
    return task


@pytest.mark.unit
@pytest.mark.asyncio
class TestCountdown:

    async def test_countdown_sequence_then_running(self, clock, recorder, haptics):
        engine = make_engine(clock, recorder)
        states = []
        engine.subscribe(states.append)

        await start(engine, clock, 1, haptics=haptics)

        countdown = [s.countdown_remaining for s in states if s.phase == SessionPhase.COUNTING_DOWN]
        assert countdown == [3, 2, 1]
        running = [s for s in states if s.phase == SessionPhase.RUNNING]
        assert running[0].elapsed_seconds == 0
        assert running[0].countdown_remaining is None
        assert running[0].scheduled_start_time is None
        assert engine.state.phase == SessionPhase.RUNNING
        assert engine.state.total_seconds == 60

    async def test_scheduled_start_time(self, clock, recorder):
        engine = make_engine(clock, recorder)
        states = []
        engine.subscribe(states.append)

        await start(engine, clock)

        scheduled = {s.scheduled_start_time for s in states if s.phase == SessionPhase.COUNTING_DOWN}
        assert scheduled == {clock.start_epoch_ms + 3000}

    async def test_countdown_pulses(self, clock, recorder, haptics):
        engine = make_engine(clock, recorder, countdown_pulse_ms=150)
        await start(engine, clock, haptics=haptics)

        # three countdown ticks, then the first inhale cue
        assert haptics.pulses == [150, 150, 150, 4000]

    async def test_no_loops_during_countdown(self, clock, recorder):
        engine = make_engine(clock, recorder)
        task = asyncio.ensure_future(engine.prepare_and_start(1))
        await clock.advance(2000)

        assert engine.state.phase == SessionPhase.COUNTING_DOWN
        assert engine.loop_tasks == ()

        await clock.advance(1000)
        assert task.result() is True
        assert len(engine.loop_tasks) == 2

    async def test_duration_coercion(self, clock, recorder):
        for requested in (0, -5, "abc", None):
            fresh_clock = ManualClock()
            engine = make_engine(fresh_clock, FakeRecorder())
            task = asyncio.ensure_future(engine.prepare_and_start(requested))
            await fresh_clock.advance(3000)
            assert task.result() is True
            assert engine.state.total_seconds == 60
            await engine.shutdown()

    async def test_stop_during_countdown_discards(self, clock, recorder):
        engine = make_engine(clock, recorder)
        task = asyncio.ensure_future(engine.prepare_and_start(1))
        await clock.advance(1000)

        assert await engine.stop(save=True) is None
        await clock.advance(3000)

        assert task.result() is False
        assert engine.state.phase == SessionPhase.IDLE
        assert engine.loop_tasks == ()
        await engine.wait_finished()
        assert recorder.records == []

    async def test_pause_ignored_during_countdown(self, clock, recorder):
        engine = make_engine(clock, recorder)
        asyncio.ensure_future(engine.prepare_and_start(1))
        await clock.advance(0)

        assert engine.pause_resume() is False
        assert engine.state.phase == SessionPhase.COUNTING_DOWN
        await engine.shutdown()
        await clock.advance(1000)

    async def test_start_failure_resets_to_idle(self, recorder):
        class BrokenClock(ManualClock):
            def epoch_ms(self):
                raise RuntimeError("clock unavailable")

        engine = make_engine(BrokenClock(), recorder)
        assert await engine.prepare_and_start(1) is False
        assert engine.state.phase == SessionPhase.IDLE
        assert recorder.records == []

    async def test_cancelled_start_resets_to_idle(self, clock, recorder):
        engine = make_engine(clock, recorder)
        task = asyncio.ensure_future(engine.prepare_and_start(1))
        await clock.advance(1000)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert engine.state.phase == SessionPhase.IDLE


@pytest.mark.unit
@pytest.mark.asyncio
class TestCompletion:

    async def test_completes_after_total_seconds(self, clock, recorder):
        engine = make_engine(clock, recorder)
        phases = []
        engine.subscribe(lambda s: phases.append(s.phase))
        await start(engine, clock, 1)

        await clock.advance(59_000)
        assert engine.state.elapsed_seconds == 59
        assert engine.state.phase == SessionPhase.RUNNING

        await clock.advance(1000)
        await engine.wait_finished()

        assert SessionPhase.COMPLETED in phases
        assert phases[-1] == SessionPhase.IDLE
        assert engine.state.phase == SessionPhase.IDLE
        assert len(recorder.records) == 1
        record = recorder.records[0]
        assert record.completed is True
        assert record.duration_minutes == 1
        assert record.average_noise_level == 0.0
        assert record.started_at_epoch_millis == clock.start_epoch_ms + 3000

    async def test_elapsed_never_exceeds_total(self, clock, recorder):
        engine = make_engine(clock, recorder)
        seen = []
        engine.subscribe(lambda s: seen.append((s.elapsed_seconds, s.total_seconds)))
        await start(engine, clock, 1)

        await clock.advance(90_000)

        assert all(elapsed <= total for elapsed, total in seen if total)
        assert len(recorder.records) == 1

    async def test_all_loops_finish(self, clock, recorder, audio_input):
        engine = make_engine(clock, recorder, audio=audio_input)
        await start(engine, clock, 1, ambient_noise_enabled=True)
        tasks = engine.loop_tasks
        assert len(tasks) == 3

        await clock.advance(60_000)
        await engine.wait_finished()

        assert all(task.done() for task in tasks)

    async def test_recorder_failure_still_returns_to_idle(self, clock):
        recorder = FakeRecorder(fail=True)
        engine = make_engine(clock, recorder)
        await start(engine, clock, 1)

        await clock.advance(60_000)
        await engine.wait_finished()

        assert engine.state.phase == SessionPhase.IDLE


@pytest.mark.unit
@pytest.mark.asyncio
class TestPause:

    @pytest.mark.parametrize("policy", [ElapsedPolicy.WALL_CLOCK, ElapsedPolicy.TICK])
    async def test_pause_freezes_elapsed(self, clock, recorder, policy):
        engine = make_engine(clock, recorder, elapsed_policy=policy)
        await start(engine, clock, 1)
        await clock.advance(10_500)
        assert engine.state.elapsed_seconds == 10

        assert engine.pause_resume() is True
        assert engine.state.phase == SessionPhase.PAUSED
        assert engine.state.is_paused is True

        await clock.advance(5000)
        assert engine.state.elapsed_seconds == 10

        engine.pause_resume()
        assert engine.state.phase == SessionPhase.RUNNING
        await clock.advance(500)
        assert engine.state.elapsed_seconds == 11
        await engine.shutdown()

    async def test_pause_freezes_cue_cycle(self, clock, recorder, haptics):
        engine = make_engine(clock, recorder)
        await start(engine, clock, 1, haptics=haptics)
        await clock.advance(1000)

        engine.pause_resume()
        frozen = engine.cue_position
        pulses = len(haptics.pulses)
        await clock.advance(8000)

        assert engine.cue_position == frozen
        assert len(haptics.pulses) == pulses

        engine.pause_resume()
        await clock.advance(3200)
        step, _ = engine.cue_position
        assert step == 1
        await engine.shutdown()

    async def test_pause_mid_slice_does_not_repeat_cue(self, clock, recorder, haptics):
        engine = make_engine(clock, recorder, countdown_seconds=0)
        task = asyncio.ensure_future(engine.prepare_and_start(1, haptics=haptics))
        await clock.advance(0)
        assert task.result() is True

        await clock.advance(50)
        engine.pause_resume()
        await clock.advance(100)
        engine.pause_resume()
        await clock.advance(1000)

        assert haptics.pulses == [4000]
        # 50 ms before the pause plus 1000 ms after resume
        assert engine.cue_position == (0, 1050)
        await engine.shutdown()

    async def test_pause_mid_slice_keeps_progress(self, clock, recorder):
        engine = make_engine(clock, recorder, countdown_seconds=0)
        task = asyncio.ensure_future(engine.prepare_and_start(1))
        await clock.advance(0)
        assert task.result() is True

        await clock.advance(3990)
        engine.pause_resume()
        await clock.advance(500)
        assert engine.cue_position == (0, 3990)

        engine.pause_resume()
        await clock.advance(20)
        step, _ = engine.cue_position
        assert step == 1
        await engine.shutdown()

    async def test_cue_cycle_pulses(self, clock, recorder, haptics):
        engine = make_engine(clock, recorder, countdown_seconds=0)
        task = asyncio.ensure_future(engine.prepare_and_start(1, haptics=haptics))
        await clock.advance(0)
        assert task.result() is True

        await clock.advance(16_000)

        # inhale, exhale, then inhale again at the start of the next cycle
        assert haptics.pulses == [4000, 4000, 4000]
        await engine.shutdown()

    async def test_pause_resume_ignored_when_idle(self, clock, recorder):
        engine = make_engine(clock, recorder)
        states = []
        engine.subscribe(states.append)

        assert engine.pause_resume() is False
        assert states == []
        assert engine.state.phase == SessionPhase.IDLE

    async def test_stop_while_paused(self, clock, recorder):
        engine = make_engine(clock, recorder)
        await start(engine, clock, 2)
        await clock.advance(20_000)
        engine.pause_resume()

        record = await engine.stop(save=True)
        await engine.wait_finished()

        assert record.completed is False
        assert recorder.records == [record]
        assert engine.state.phase == SessionPhase.IDLE


@pytest.mark.unit
@pytest.mark.asyncio
class TestStop:

    async def test_early_stop_saves_incomplete_record(self, clock, recorder):
        engine = make_engine(clock, recorder)
        phases = []
        engine.subscribe(lambda s: phases.append(s.phase))
        await start(engine, clock, 1)
        await clock.advance(30_000)
        assert engine.state.elapsed_seconds == 30

        record = await engine.stop(save=True)
        await engine.wait_finished()

        assert record.completed is False
        assert record.duration_minutes == 1
        assert recorder.records == [record]
        assert phases[-2:] == [SessionPhase.STOPPED, SessionPhase.IDLE]
        assert all(task.done() for task in engine.loop_tasks)

    async def test_stop_rounds_duration_up(self, clock, recorder):
        engine = make_engine(clock, recorder)
        await start(engine, clock, 5)
        await clock.advance(61_000)

        record = await engine.stop(save=True)

        assert record.duration_minutes == 2

    async def test_stop_without_save(self, clock, recorder):
        engine = make_engine(clock, recorder)
        await start(engine, clock, 1)
        await clock.advance(10_000)

        assert await engine.stop(save=False) is None
        await engine.wait_finished()

        assert recorder.records == []
        assert engine.state.phase == SessionPhase.IDLE

    async def test_stop_after_completion_persists_once(self, clock, recorder):
        engine = make_engine(clock, recorder)
        await start(engine, clock, 1)
        await clock.advance(60_000)

        assert await engine.stop(save=True) is None
        await engine.wait_finished()

        assert len(recorder.records) == 1
        assert recorder.records[0].completed is True

    async def test_stop_racing_completion_persists_once(self, clock, recorder):
        engine = make_engine(clock, recorder)
        await start(engine, clock, 1)
        await clock.advance(59_999)

        stop_task = asyncio.ensure_future(engine.stop(save=True))
        await clock.advance(1)
        await stop_task
        await engine.wait_finished()

        assert len(recorder.records) == 1

    async def test_stop_when_idle(self, clock, recorder):
        engine = make_engine(clock, recorder)
        assert await engine.stop(save=True) is None
        assert recorder.records == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestElapsedPolicy:

    async def test_wall_clock_catches_up_after_suspension(self, clock, recorder):
        engine = make_engine(clock, recorder, elapsed_policy=ElapsedPolicy.WALL_CLOCK)
        await start(engine, clock, 1)
        await clock.advance(5000)
        assert engine.state.elapsed_seconds == 5

        clock.suspend(30_000)
        await clock.advance(0)

        assert engine.state.elapsed_seconds == 35
        await engine.shutdown()

    async def test_tick_loses_suspended_time(self, clock, recorder):
        engine = make_engine(clock, recorder, elapsed_policy=ElapsedPolicy.TICK)
        await start(engine, clock, 1)
        await clock.advance(5000)

        clock.suspend(30_000)
        await clock.advance(0)

        assert engine.state.elapsed_seconds == 6
        await engine.shutdown()

    async def test_wall_clock_suspension_past_total_completes(self, clock, recorder):
        engine = make_engine(clock, recorder)
        await start(engine, clock, 1)
        await clock.advance(5000)

        clock.suspend(300_000)
        await clock.advance(0)
        await engine.wait_finished()

        assert len(recorder.records) == 1
        assert recorder.records[0].completed is True
        assert recorder.records[0].duration_minutes == 1

    async def test_policy_from_config(self, clock, recorder):
        config = BreatheConfig()
        config.set('session.elapsed_policy', 'tick')
        config.set('session.countdown_seconds', 5)

        engine = SessionEngine.from_config(config, recorder, clock=clock)

        assert engine._elapsed_policy is ElapsedPolicy.TICK
        assert engine._countdown_seconds == 5


@pytest.mark.unit
@pytest.mark.asyncio
class TestNoise:

    async def test_average_of_samples(self, clock, recorder, audio_input, monkeypatch):
        levels = [-10.0, -20.0, -30.0]
        monkeypatch.setattr(
            "breathe.services.session_engine.compute_noise_level",
            lambda data: levels.pop(0) if levels else None,
        )
        engine = make_engine(clock, recorder, audio=audio_input)
        await start(engine, clock, 1, ambient_noise_enabled=True)
        await clock.advance(10_000)

        assert engine.noise_samples == [-10.0, -20.0, -30.0]
        record = await engine.stop(save=True)

        assert record.average_noise_level == pytest.approx(-20.0)

    async def test_current_noise_level_published(self, clock, recorder):
        audio = FakeAudioInput(amplitude=32767)
        engine = make_engine(clock, recorder, audio=audio)
        await start(engine, clock, 1, ambient_noise_enabled=True)
        await clock.advance(1000)

        assert engine.state.current_noise_level == pytest.approx(0.0, abs=1e-6)
        await engine.shutdown()

    async def test_no_samples_without_ambient(self, clock, recorder, audio_input):
        engine = make_engine(clock, recorder, audio=audio_input)
        await start(engine, clock, 1)
        await clock.advance(5000)

        record = await engine.stop(save=True)

        assert audio_input.open_count == 0
        assert record.average_noise_level == 0.0
        assert engine.state.current_noise_level is None

    async def test_no_sampling_while_paused(self, clock, recorder, audio_input):
        engine = make_engine(clock, recorder, audio=audio_input)
        await start(engine, clock, 1, ambient_noise_enabled=True)
        await clock.advance(2000)
        reads = audio_input.reads

        engine.pause_resume()
        await clock.advance(5000)

        assert audio_input.reads == reads
        await engine.shutdown()

    async def test_read_failures_are_skipped(self, clock, recorder):
        audio = FakeAudioInput(fail_reads=True)
        engine = make_engine(clock, recorder, audio=audio)
        await start(engine, clock, 1, ambient_noise_enabled=True)
        await clock.advance(5000)

        assert audio.reads == 5
        assert engine.state.phase == SessionPhase.RUNNING
        record = await engine.stop(save=True)

        assert record.average_noise_level == 0.0
        assert audio.close_count == 1


@pytest.mark.unit
@pytest.mark.asyncio
class TestResourceRelease:

    async def test_released_after_completion(self, clock, recorder, audio_input):
        engine = make_engine(clock, recorder, audio=audio_input)
        await start(engine, clock, 1, ambient_noise_enabled=True)
        await clock.advance(60_000)
        await engine.wait_finished()

        assert audio_input.open_count == 1
        assert audio_input.close_count == 1
        assert all(task.done() for task in engine.loop_tasks)

    async def test_released_after_stop(self, clock, recorder, audio_input):
        engine = make_engine(clock, recorder, audio=audio_input)
        await start(engine, clock, 1, ambient_noise_enabled=True)
        await clock.advance(3000)

        await engine.stop(save=False)

        assert audio_input.close_count == 1
        assert all(task.done() for task in engine.loop_tasks)

    async def test_released_after_shutdown(self, clock, recorder, audio_input):
        engine = make_engine(clock, recorder, audio=audio_input)
        await start(engine, clock, 1, ambient_noise_enabled=True)
        await clock.advance(3000)

        await engine.shutdown()

        assert audio_input.close_count == 1
        assert engine.state.phase == SessionPhase.IDLE
        assert recorder.records == []

    async def test_open_failure_does_not_stop_session(self, clock, recorder):
        class BrokenInput(FakeAudioInput):
            def open(self):
                raise OSError("no input device")

        audio = BrokenInput()
        engine = make_engine(clock, recorder, audio=audio)
        await start(engine, clock, 1, ambient_noise_enabled=True)
        await clock.advance(60_000)
        await engine.wait_finished()

        assert audio.close_count == 0
        assert len(recorder.records) == 1


@pytest.mark.unit
@pytest.mark.asyncio
class TestReplacementAndFailures:

    async def test_new_start_replaces_live_session(self, clock, recorder, audio_input):
        engine = make_engine(clock, recorder, audio=audio_input)
        await start(engine, clock, 1, ambient_noise_enabled=True)
        await clock.advance(20_000)
        first_tasks = engine.loop_tasks

        task = asyncio.ensure_future(engine.prepare_and_start(2))
        await clock.advance(0)

        assert engine.state.phase == SessionPhase.COUNTING_DOWN
        assert engine.state.elapsed_seconds == 0
        assert engine.state.total_seconds == 120
        assert all(t.done() for t in first_tasks)
        assert audio_input.close_count == 1

        await clock.advance(3000)
        assert task.result() is True
        await clock.advance(5000)
        assert engine.state.elapsed_seconds == 5

        await engine.shutdown()
        assert recorder.records == []
        assert engine.state.phase == SessionPhase.IDLE

    async def test_haptic_failure_is_not_fatal(self, clock, recorder):
        haptics = FakeHaptics(fail=True)
        engine = make_engine(clock, recorder)
        await start(engine, clock, 1, haptics=haptics)
        await clock.advance(60_000)
        await engine.wait_finished()

        assert len(haptics.pulses) > 3
        assert recorder.records[0].completed is True

    async def test_listener_failure_is_not_fatal(self, clock, recorder):
        engine = make_engine(clock, recorder)

        def broken(state):
            raise ValueError("bad listener")

        engine.subscribe(broken)
        await start(engine, clock, 1)

        assert engine.state.phase == SessionPhase.RUNNING
        await engine.shutdown()

    async def test_unsubscribe(self, clock, recorder):
        engine = make_engine(clock, recorder)
        states = []
        unsubscribe = engine.subscribe(states.append)
        unsubscribe()

        await start(engine, clock, 1)

        assert states == []
        await engine.shutdown()


@pytest.mark.unit
def test_rejects_empty_pattern():
    with pytest.raises(ValueError):
        SessionEngine(FakeRecorder(), pattern=BreathingPattern(0, 0, 0, 0))
