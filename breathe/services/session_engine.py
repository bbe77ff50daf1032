"""Guided breathing session engine.

A run goes Idle -> CountingDown -> Running <-> Paused -> Completed/Stopped -> Idle.
After the countdown three asyncio tasks run side by side:

* the cue loop walks the breathing pattern and fires haptic pulses,
* the timer loop owns ``elapsed_seconds`` and is the only path to natural completion,
* the noise loop (optional) owns the audio input and the noise samples.

Each loop writes a disjoint part of the state and every change is published by
replacing the frozen ``SessionRuntimeState`` as a whole, so no locks are needed.

Elapsed time follows ``ElapsedPolicy``. With ``WALL_CLOCK`` (the default) each
tick recomputes ``floor((now - start - paused) / 1000)`` from a monotonic start,
so a process suspended mid-session catches up when it wakes. With ``TICK`` every
non-paused tick adds exactly one second and suspended time is lost.
"""

import asyncio
import logging
from typing import Any, Callable, List, Optional, Tuple

from ..audio.capture import AudioInput
from ..audio.noise import NoiseAccumulator, compute_noise_level
from ..models.session import (
    BreathingPattern,
    ElapsedPolicy,
    SessionConfig,
    SessionPhase,
    SessionRecord,
    SessionRuntimeState,
)
from .clock import Clock
from .haptics import HapticEmitter

logger = logging.getLogger(__name__)

StateListener = Callable[[SessionRuntimeState], None]

TICK_MS = 1000


class _Run:
    """Bookkeeping for one session instance."""

    def __init__(self, run_id: int, config: SessionConfig, haptics: Optional[HapticEmitter]):
        self.run_id = run_id
        self.config = config
        self.haptics = haptics
        self.noise = NoiseAccumulator()
        self.tasks: List[asyncio.Task] = []
        self.finalized = False

        self.started_at_epoch_ms = 0
        self.started_at_mono_ms = 0
        self.paused_total_ms = 0
        self.pause_started_ms: Optional[int] = None

        # set while not paused
        self.resumed = asyncio.Event()
        self.resumed.set()

        # cue cycle position
        self.cue_step = 0
        self.cue_step_elapsed_ms = 0
        self.cue_pulsed = False


class SessionEngine:
    """Runs one guided breathing session at a time and hands finished sessions to a recorder."""

    def __init__(
        self,
        recorder: Any,
        clock: Optional[Clock] = None,
        audio_input_factory: Optional[Callable[[], AudioInput]] = None,
        countdown_seconds: int = 3,
        elapsed_policy: ElapsedPolicy = ElapsedPolicy.WALL_CLOCK,
        pattern: Optional[BreathingPattern] = None,
        pause_poll_ms: int = 100,
        countdown_pulse_ms: int = 200,
        noise_interval_ms: int = 1000,
        noise_window_ms: int = 250,
    ):
        """Initialize the engine.

        Args:
            recorder: Object with an async ``append(record)`` method
            clock: Time source; all delays go through it
            audio_input_factory: Creates the audio input for ambient noise sampling
            countdown_seconds: Length of the pre-session countdown
            elapsed_policy: How the timer loop derives elapsed seconds
            pattern: Breathing cycle, box breathing by default
            pause_poll_ms: Cue loop polling interval and delay slice
            countdown_pulse_ms: Pulse fired on each countdown tick
            noise_interval_ms: Delay between noise samples
            noise_window_ms: Length of each audio window read
        """
        self._recorder = recorder
        self._clock = clock or Clock()
        self._audio_input_factory = audio_input_factory
        self._countdown_seconds = countdown_seconds
        self._elapsed_policy = elapsed_policy
        self._pattern = pattern or BreathingPattern()
        if self._pattern.cycle_ms <= 0:
            raise ValueError("Breathing pattern must have a positive cycle length")
        self._pause_poll_ms = max(1, pause_poll_ms)
        self._countdown_pulse_ms = countdown_pulse_ms
        self._noise_interval_ms = max(1, noise_interval_ms)
        self._noise_window_ms = noise_window_ms

        self._state = SessionRuntimeState()
        self._listeners: List[StateListener] = []
        self._run: Optional[_Run] = None
        self._latest_run: Optional[_Run] = None
        self._run_counter = 0
        self._pending_writes: set = set()

    @classmethod
    def from_config(cls, config, recorder: Any, clock: Optional[Clock] = None,
                    audio_input_factory: Optional[Callable[[], AudioInput]] = None) -> "SessionEngine":
        """Build an engine from a BreatheConfig."""
        pattern = BreathingPattern(
            inhale_ms=config.get('breathing.inhale_ms', 4000),
            hold_after_inhale_ms=config.get('breathing.hold_after_inhale_ms', 4000),
            exhale_ms=config.get('breathing.exhale_ms', 4000),
            hold_after_exhale_ms=config.get('breathing.hold_after_exhale_ms', 4000),
        )
        return cls(
            recorder=recorder,
            clock=clock,
            audio_input_factory=audio_input_factory,
            countdown_seconds=config.get('session.countdown_seconds', 3),
            elapsed_policy=ElapsedPolicy(config.get('session.elapsed_policy', 'wall_clock')),
            pattern=pattern,
            pause_poll_ms=config.get('session.pause_poll_ms', 100),
            countdown_pulse_ms=config.get('session.countdown_pulse_ms', 200),
            noise_interval_ms=config.get('audio.sample_interval_ms', 1000),
            noise_window_ms=config.get('audio.window_ms', 250),
        )

    # ── Observation ─────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionRuntimeState:
        return self._state

    @property
    def cue_position(self) -> Optional[Tuple[int, int]]:
        """(step index, ms into step) of the latest run's breathing cycle."""
        if self._latest_run is None:
            return None
        return self._latest_run.cue_step, self._latest_run.cue_step_elapsed_ms

    @property
    def loop_tasks(self) -> Tuple[asyncio.Task, ...]:
        """Loop tasks of the latest run, finished or not."""
        if self._latest_run is None:
            return ()
        return tuple(self._latest_run.tasks)

    @property
    def noise_samples(self) -> List[float]:
        if self._latest_run is None:
            return []
        return list(self._latest_run.noise.samples)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Push every new state to listener. Returns a function that unsubscribes."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: SessionRuntimeState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Session state listener failed")

    # ── Commands ────────────────────────────────────────────────────────────

    async def prepare_and_start(self, duration_minutes: Any, haptics: Optional[HapticEmitter] = None,
                                ambient_noise_enabled: bool = False) -> bool:
        """Count down, then start the session loops.

        Returns True once the loops are running. Returns False if the start failed
        or the countdown was abandoned by stop() or a newer start; in both cases the
        engine is back in Idle and nothing was persisted.
        """
        if self._run is not None:
            logger.warning(f"Replacing live session {self._run.run_id} with a new one")
            await self._discard(self._run)

        config = SessionConfig.create(duration_minutes, self._countdown_seconds, ambient_noise_enabled)
        self._run_counter += 1
        run = _Run(self._run_counter, config, haptics)
        self._run = run
        self._latest_run = run

        try:
            scheduled = self._clock.epoch_ms() + config.countdown_seconds * 1000
            logger.info(f"Session {run.run_id}: {config.requested_minutes} min, "
                        f"countdown {config.countdown_seconds}s, ambient={config.ambient_noise_enabled}")

            for remaining in range(config.countdown_seconds, 0, -1):
                self._set_state(SessionRuntimeState(
                    phase=SessionPhase.COUNTING_DOWN,
                    countdown_remaining=remaining,
                    scheduled_start_time=scheduled,
                    total_seconds=config.total_seconds,
                ))
                self._emit_pulse(haptics, self._countdown_pulse_ms, "countdown")
                await self._clock.sleep(TICK_MS)
                if self._run is not run:
                    logger.info(f"Session {run.run_id}: countdown abandoned")
                    return False

            run.started_at_epoch_ms = self._clock.epoch_ms()
            run.started_at_mono_ms = self._clock.monotonic_ms()
            self._set_state(SessionRuntimeState(
                phase=SessionPhase.RUNNING,
                elapsed_seconds=0,
                is_paused=False,
                total_seconds=config.total_seconds,
            ))

            loop = asyncio.get_running_loop()
            run.tasks.append(loop.create_task(self._supervise(run, self._cue_loop(run), "cue")))
            run.tasks.append(loop.create_task(self._supervise(run, self._timer_loop(run), "timer")))
            if config.ambient_noise_enabled:
                run.tasks.append(loop.create_task(self._supervise(run, self._noise_loop(run), "noise")))

            logger.info(f"Session {run.run_id}: running with {len(run.tasks)} loops")
            return True

        except asyncio.CancelledError:
            if self._run is run:
                self._reset(run)
            raise
        except Exception:
            logger.exception(f"Session {run.run_id}: start failed, resetting to idle")
            if self._run is run:
                await self._discard(run)
            return False

    def pause_resume(self) -> bool:
        """Toggle pause. Only valid while Running or Paused."""
        run = self._run
        if run is None or not self._state.is_active:
            logger.warning(f"pause_resume() ignored in phase '{self._state.phase.value}'")
            return False

        now = self._clock.monotonic_ms()
        if self._state.is_paused:
            if run.pause_started_ms is not None:
                run.paused_total_ms += now - run.pause_started_ms
                run.pause_started_ms = None
            run.resumed.set()
            self._set_state(self._state.evolve(phase=SessionPhase.RUNNING, is_paused=False))
            logger.info(f"Session {run.run_id}: resumed at {self._state.elapsed_seconds}s")
        else:
            run.pause_started_ms = now
            run.resumed.clear()
            self._set_state(self._state.evolve(phase=SessionPhase.PAUSED, is_paused=True))
            logger.info(f"Session {run.run_id}: paused at {self._state.elapsed_seconds}s")
        return True

    async def stop(self, save: bool = True) -> Optional[SessionRecord]:
        """Stop the live session, optionally saving it. Always ends in Idle.

        Returns the record handed to the recorder, or None when nothing was saved.
        """
        run = self._run
        if run is None or run.finalized:
            logger.warning("stop() called with no live session")
            return None

        if self._state.phase == SessionPhase.COUNTING_DOWN:
            logger.info(f"Session {run.run_id}: stopped during countdown, discarding")
            await self._discard(run)
            return None

        record = None
        if save:
            record = self._finalize(run, SessionPhase.STOPPED)
        else:
            logger.info(f"Session {run.run_id}: stopped without saving at {self._state.elapsed_seconds}s")
            self._set_state(self._state.evolve(phase=SessionPhase.STOPPED))
            self._reset(run)

        await self._teardown(run)
        return record

    async def wait_finished(self) -> None:
        """Wait for the current run's loops and any pending record writes."""
        run = self._run
        if run is not None and run.tasks:
            await asyncio.gather(*run.tasks, return_exceptions=True)
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    async def shutdown(self) -> None:
        """Discard any live session and flush pending writes."""
        if self._run is not None:
            await self._discard(self._run)
        await self.wait_finished()

    # ── Loops ───────────────────────────────────────────────────────────────

    def _is_current(self, run: _Run) -> bool:
        return self._run is run and not run.finalized

    def _loop_should_run(self, run: _Run) -> bool:
        return (
            self._is_current(run)
            and self._state.is_active
            and self._state.elapsed_seconds < run.config.total_seconds
        )

    async def _supervise(self, run: _Run, loop_coro, name: str) -> None:
        try:
            await loop_coro
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Session {run.run_id}: {name} loop failed, discarding session")
            if self._is_current(run):
                self._reset(run)

    async def _cue_loop(self, run: _Run) -> None:
        steps = self._pattern.steps
        while self._loop_should_run(run):
            if self._state.is_paused:
                await run.resumed.wait()
                continue

            step = steps[run.cue_step]
            if not run.cue_pulsed:
                run.cue_pulsed = True
                if step.pulse:
                    self._emit_pulse(run.haptics, step.duration_ms, step.name)

            slice_ms = min(self._pause_poll_ms, step.duration_ms - run.cue_step_elapsed_ms)
            slice_start = self._clock.monotonic_ms()
            paused_before = run.paused_total_ms
            await self._clock.sleep(slice_ms)

            # only the unpaused part of the slice moves the cycle forward
            paused_ms = run.paused_total_ms - paused_before
            if run.pause_started_ms is not None:
                paused_ms += self._clock.monotonic_ms() - max(run.pause_started_ms, slice_start)
            active_ms = self._clock.monotonic_ms() - slice_start - paused_ms
            run.cue_step_elapsed_ms += max(0, min(slice_ms, active_ms))
            if run.cue_step_elapsed_ms >= step.duration_ms:
                run.cue_step = (run.cue_step + 1) % len(steps)
                run.cue_step_elapsed_ms = 0
                run.cue_pulsed = False

    async def _timer_loop(self, run: _Run) -> None:
        total = run.config.total_seconds
        while self._loop_should_run(run):
            await self._clock.sleep(TICK_MS)
            if not self._is_current(run) or not self._state.is_active:
                return
            if self._state.is_paused:
                continue

            elapsed = self._next_elapsed(run)
            if elapsed != self._state.elapsed_seconds:
                self._set_state(self._state.evolve(elapsed_seconds=elapsed))

        if self._is_current(run) and self._state.elapsed_seconds >= total:
            self._finalize(run, SessionPhase.COMPLETED)

    def _next_elapsed(self, run: _Run) -> int:
        current = self._state.elapsed_seconds
        if self._elapsed_policy is ElapsedPolicy.TICK:
            computed = current + 1
        else:
            active_ms = self._clock.monotonic_ms() - run.started_at_mono_ms - run.paused_total_ms
            computed = active_ms // TICK_MS
        return max(current, min(run.config.total_seconds, computed))

    async def _noise_loop(self, run: _Run) -> None:
        if self._audio_input_factory is None:
            logger.warning("Ambient noise detection enabled but no audio input is configured")
            return

        try:
            audio = self._audio_input_factory()
            with audio:
                while self._loop_should_run(run):
                    await self._clock.sleep(self._noise_interval_ms)
                    if not self._loop_should_run(run):
                        break
                    if self._state.is_paused:
                        continue

                    try:
                        data = await audio.read_window(self._noise_window_ms)
                    except Exception as e:
                        logger.warning(f"Audio read failed, skipping sample: {e}")
                        continue

                    level = compute_noise_level(data)
                    if level is None or not self._is_current(run):
                        continue
                    run.noise.add(level)
                    self._set_state(self._state.evolve(current_noise_level=level))
        except Exception:
            logger.exception(f"Session {run.run_id}: ambient noise sampling stopped")

    # ── Finalize / teardown ─────────────────────────────────────────────────

    def _finalize(self, run: _Run, outcome: SessionPhase) -> Optional[SessionRecord]:
        """Turn the run into a record exactly once and return to Idle."""
        if run.finalized:
            return None
        run.finalized = True

        state = self._state
        record = SessionRecord.from_run(
            elapsed_seconds=state.elapsed_seconds,
            total_seconds=run.config.total_seconds,
            started_at_epoch_millis=run.started_at_epoch_ms,
            average_noise_level=run.noise.average,
        )
        self._set_state(state.evolve(phase=outcome, is_paused=False))
        logger.info(f"Session {run.run_id}: {outcome.value} at {state.elapsed_seconds}s "
                    f"({record.duration_minutes} min, completed={record.completed}, "
                    f"{len(run.noise)} noise samples)")

        self._persist(record)
        self._reset(run)
        return record

    def _persist(self, record: SessionRecord) -> None:
        task = asyncio.get_running_loop().create_task(self._write_record(record))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write_record(self, record: SessionRecord) -> None:
        try:
            result = await self._recorder.append(record)
        except Exception:
            logger.exception("Failed to persist session record")
            return
        if result is not None and not getattr(result, "ok", True):
            logger.warning(f"Session record not persisted: {result.error}")

    def _reset(self, run: _Run) -> None:
        """Mark the run over, cancel its other loops and publish Idle."""
        run.finalized = True
        current = asyncio.current_task()
        for task in run.tasks:
            if task is not current and not task.done():
                task.cancel()
        if self._run is run:
            self._run = None
            self._set_state(SessionRuntimeState())

    async def _teardown(self, run: _Run) -> None:
        current = asyncio.current_task()
        others = [task for task in run.tasks if task is not current]
        for task in others:
            if not task.done():
                task.cancel()
        if others:
            await asyncio.gather(*others, return_exceptions=True)

    async def _discard(self, run: _Run) -> None:
        self._reset(run)
        await self._teardown(run)

    def _emit_pulse(self, haptics: Optional[HapticEmitter], duration_ms: int, label: str) -> None:
        if haptics is None:
            return
        try:
            haptics.pulse(duration_ms)
        except Exception as e:
            logger.warning(f"Haptic {label} pulse failed: {e}")
