"""
============================================================
 Focus Companion — Threaded Camera
 Holds the exclusive capture handle and keeps only the newest
 frame (atomic reference swap). Consumers that poll slower than
 the camera simply skip the frames in between.
============================================================
"""

import logging
import threading
import time

import cv2

from focus_companion import config
from focus_companion.errors import DeviceUnavailable, PermissionDenied

logger = logging.getLogger(__name__)


class Camera:
    """Latest-frame camera capture with an explicit acquire/release lifecycle."""

    def __init__(self, src=None):
        self.src = src if src is not None else config.CAMERA_INDEX
        self.cap = None
        self._current_frame = None    # atomic reference
        self.running = False
        self._thread = None
        self._first_frame = threading.Event()

    def start(self, warmup_timeout=None):
        """
        Acquire the device and start the capture thread.
        Blocks until the first frame arrives. Raises DeviceUnavailable when
        the device cannot be opened and PermissionDenied when it opens but
        never delivers a frame (the OS refused access).
        """
        timeout = config.CAMERA_WARMUP_TIMEOUT if warmup_timeout is None else warmup_timeout
        self._connect()
        if self.cap is None or not self.cap.isOpened():
            self._release_capture()
            raise DeviceUnavailable(f"Camera source {self.src} could not be opened")

        self._first_frame.clear()
        self.running = True
        self._thread = threading.Thread(target=self._update, daemon=True, name="Camera")
        self._thread.start()
        logger.info("[CAMERA] Capture thread started (source=%s)", self.src)

        if not self._first_frame.wait(timeout):
            self.stop()
            raise PermissionDenied(
                f"Camera source {self.src} delivered no frames within {timeout:.1f}s"
            )
        return self

    def _connect(self):
        """Open the camera device."""
        self._release_capture()

        try:
            cap = cv2.VideoCapture(self.src)
        except cv2.error as e:
            logger.warning("[CAMERA] cv2.VideoCapture raised for source %s: %s", self.src, e)
            return

        if not cap.isOpened():
            logger.warning("[CAMERA] cv2.VideoCapture failed for source %s", self.src)
            cap.release()
            return

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, config.CAMERA_WIDTH)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, config.CAMERA_HEIGHT)
        cap.set(cv2.CAP_PROP_FPS, config.CAMERA_FPS)
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)  # Keep only the newest frame in the driver

        actual_w = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_h = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        actual_fps = cap.get(cv2.CAP_PROP_FPS)
        logger.info("[CAMERA] Opened source %s (%dx%d @ %.0ffps)",
                    self.src, actual_w, actual_h, actual_fps)

        self.cap = cap

    def _release_capture(self):
        if self.cap is not None:
            try:
                self.cap.release()
            except cv2.error as e:
                logger.warning("[CAMERA] Release failed: %s", e)
            self.cap = None

    def _update(self):
        """Continuously read frames in a background thread."""
        while self.running:
            if self.cap is None or not self.cap.isOpened():
                logger.warning("[CAMERA] Lost connection. Reconnecting...")
                time.sleep(config.CAMERA_RECONNECT_DELAY)
                if self.running:
                    self._connect()
                continue

            ret, frame = self.cap.read()
            if not ret or frame is None:
                time.sleep(0.005)
                continue

            h, w = frame.shape[:2]
            size = (config.CAMERA_WIDTH, config.CAMERA_HEIGHT)
            if (w, h) != size:
                frame = cv2.resize(frame, size, interpolation=cv2.INTER_LINEAR)

            if config.CAMERA_FLIP_HORIZONTAL:
                frame = cv2.flip(frame, 1)

            # Atomic reference swap - always the latest frame
            self._current_frame = frame

            if not self._first_frame.is_set():
                self._first_frame.set()
                logger.info("[CAMERA] First frame captured (%dx%d)", w, h)

    def read(self):
        """Return the latest frame (lock-free). Returns (ok, frame)."""
        frame = self._current_frame
        if frame is None:
            return False, None
        return True, frame

    def stop(self):
        """Stop the capture thread and release the device. Safe to call repeatedly."""
        was_running = self.running or self.cap is not None
        self.running = False
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=3)
        self._thread = None
        self._release_capture()
        self._current_frame = None
        if was_running:
            logger.info("[CAMERA] Stopped and released.")
