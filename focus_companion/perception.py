"""
============================================================
 Focus Companion — Perception Adapter
 Owns the camera and the three detectors for one monitoring
 session and drives them from a self-rescheduling callback on
 the host event loop:

   camera frame → detectors → SignalExtractor → PostureMonitor
                                              → debug snapshot

 Frames arriving faster than DETECTION_INTERVAL are skipped,
 never queued. Start failures are terminal for the session and
 reported as status "error". A failure inside one tick skips
 that tick; the loop always reschedules. Debug snapshots go out
 at most every DEBUG_PUBLISH_INTERVAL.
============================================================
"""

import asyncio
import logging

from focus_companion import config
from focus_companion.camera import Camera
from focus_companion.debounce import PostureMonitor
from focus_companion.errors import MonitoringStartError, TransientDetectionFailure
from focus_companion.signals import DetectionFrame, SignalExtractor

logger = logging.getLogger(__name__)


def _default_detectors():
    # Imported lazily: loading mediapipe/ultralytics is expensive.
    from focus_companion.detectors import load_detectors
    return load_detectors()


def _round(value, digits=2):
    return None if value is None else round(float(value), digits)


class PerceptionAdapter:
    """Camera + detectors + signal extraction + debounce for one session."""

    def __init__(self, settings, voice, ledger, loop=None,
                 camera_factory=Camera, detector_factory=None,
                 on_debug=None) -> None:
        self.settings = settings
        self.loop = loop
        self.camera_factory = camera_factory
        self.detector_factory = detector_factory or _default_detectors
        self.on_debug = on_debug

        self.extractor = SignalExtractor()
        self.monitor = PostureMonitor(voice, ledger)

        self.camera = None
        self.detectors = None
        self.status = config.STATUS_INACTIVE
        self.error: str | None = None
        self.debug: dict = self.snapshot()

        self._running = False
        self._start_generation: int | None = None   # generation of the start in flight
        self._generation = 0
        self._handle = None
        self._last_tick: float | None = None
        self._last_publish: float | None = None

    # ── Lifecycle ────────────────────────────────────────────
    @property
    def is_running(self) -> bool:
        return self._running

    def _enabled(self) -> bool:
        return bool(self.settings.monitoring_enabled and self.settings.posture_monitoring_enabled)

    async def _in_executor(self, fn):
        return await asyncio.get_running_loop().run_in_executor(None, fn)

    async def start(self) -> bool:
        """
        Acquire the camera and load the detectors, then begin polling.
        Returns False (status "error") when any start step fails; every
        partially acquired resource is released before returning.

        stop() invalidates a start still in flight, so a later start()
        acquires afresh instead of waiting on the abandoned one.
        """
        if self._running or self._start_generation == self._generation:
            return True

        self._generation += 1
        generation = self._generation
        self._start_generation = generation
        self.error = None
        self._set_status(config.STATUS_INITIALIZING, force=True)

        camera = None
        detectors = None
        try:
            camera = self.camera_factory()
            await self._in_executor(camera.start)
            detectors = await self._in_executor(self.detector_factory)
        except BaseException as e:
            if camera is not None:
                camera.stop()
            if detectors is not None:
                detectors.close()
            self._finish_start(generation)
            if not isinstance(e, MonitoringStartError):
                # Cancelled or unexpected: resources are released, the caller decides.
                if generation == self._generation:
                    self._set_status(config.STATUS_INACTIVE, force=True)
                raise
            if generation != self._generation:
                return False
            self.error = str(e) or e.__class__.__name__
            logger.error("[PERCEPTION] Start failed (%s): %s", e.__class__.__name__, self.error)
            self._set_status(config.STATUS_ERROR, force=True)
            return False

        self._finish_start(generation)
        if generation != self._generation or not self._enabled():
            # Stopped or disabled while acquiring: finish setup, then tear down.
            camera.stop()
            detectors.close()
            logger.info("[PERCEPTION] Monitoring disabled during start. Released.")
            if generation == self._generation:
                self._set_status(config.STATUS_INACTIVE, force=True)
            return False

        self.camera = camera
        self.detectors = detectors
        self._running = True
        self._last_tick = None
        self._set_status(config.STATUS_CALIBRATING, force=True)
        self._schedule()
        logger.info("[PERCEPTION] Monitoring started.")
        return True

    def _finish_start(self, generation: int) -> None:
        if self._start_generation == generation:
            self._start_generation = None

    def stop(self) -> None:
        """Cancel polling and release everything. Safe from any state, any number of times."""
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        was_running = self._running
        self._running = False

        if self.camera is not None:
            self.camera.stop()
            self.camera = None
        if self.detectors is not None:
            self.detectors.close()
            self.detectors = None

        self.extractor.reset()
        self.monitor.reset()
        self._last_tick = None
        self.error = None
        if was_running:
            logger.info("[PERCEPTION] Monitoring stopped.")
        self._set_status(config.STATUS_INACTIVE, force=True)

    # ── Poll loop ────────────────────────────────────────────
    def _schedule(self) -> None:
        self._handle = self.loop.call_later(config.FRAME_POLL_INTERVAL, self._detect)

    def _detect(self) -> None:
        self._handle = None
        if not self._running:
            return
        if not self._enabled():
            self.stop()
            return

        try:
            self._tick(self.loop.time())
        except TransientDetectionFailure as e:
            logger.debug("[PERCEPTION] Tick skipped: %s", e)
        except Exception:
            logger.exception("[PERCEPTION] Tick failed. Skipped.")
        finally:
            if self._running and self._handle is None:
                self._schedule()

    def _tick(self, now: float) -> None:
        if self._last_tick is not None and now - self._last_tick < config.DETECTION_INTERVAL:
            return

        ok, frame = self.camera.read()
        if not ok:
            return
        self._last_tick = now

        timestamp_ms = int(now * 1000)
        face = self.detectors.face.detect(frame, timestamp_ms)
        objects = self.detectors.phone.detect(frame, timestamp_ms)
        hands = self.detectors.hands.detect(frame, timestamp_ms)

        result = self.extractor.process(face, objects, hands)
        self.monitor.update(result, now)
        self._set_status(result.status, result, now)

    # ── Debug snapshot ───────────────────────────────────────
    def snapshot(self, frame: DetectionFrame | None = None) -> dict:
        angles = frame.angles if frame is not None else None
        deltas = frame.deltas if frame is not None else None
        monitor = self.monitor
        return {
            "status": self.status,
            "has_face": bool(frame and frame.has_face),
            "is_sitting_straight": frame.is_sitting_straight if frame else None,
            "is_looking_forward": frame.is_looking_forward if frame else None,
            "is_looking_down": frame.is_looking_down if frame else None,
            "has_phone": bool(frame and frame.has_phone),
            "hands_detected": frame.hands_detected if frame else 0,
            "hands_up": frame.hands_up if frame else None,
            "yaw": _round(angles.yaw) if angles else None,
            "pitch": _round(angles.pitch) if angles else None,
            "roll": _round(angles.roll) if angles else None,
            "yaw_delta": _round(deltas.yaw) if deltas else None,
            "pitch_delta": _round(deltas.pitch) if deltas else None,
            "roll_delta": _round(deltas.roll) if deltas else None,
            "calibration_frames": self.extractor.calibration_frames,
            "calibration_target": config.CALIBRATION_FRAMES,
            "phone_penalty_active": monitor.phone_penalty_active,
            "is_yawning": monitor.is_yawning,
            "yawn_count": monitor.yawn_count,
            "is_drowsy": monitor.is_drowsy,
            "error": self.error,
        }

    def _set_status(self, status: str, frame: DetectionFrame | None = None,
                    now: float | None = None, force: bool = False) -> None:
        """
        Record `status` and publish a snapshot at most once per
        DEBUG_PUBLISH_INTERVAL. Lifecycle transitions (force=True) publish
        as soon as they change the status.
        """
        changed = status != self.status
        self.status = status
        if now is None:
            now = self.loop.time() if self.loop is not None else 0.0
        due = self._last_publish is None or now - self._last_publish >= config.DEBUG_PUBLISH_INTERVAL
        if not (due or (force and changed)):
            return
        self._last_publish = now
        self.debug = self.snapshot(frame)
        if self.on_debug is not None:
            self.on_debug(self.debug)
