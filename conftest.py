"""Shared fakes: a manual-clock loop, recording collaborators, scripted camera and detectors."""

import heapq
import math

import numpy as np
import pytest

from focus_companion import config
from focus_companion.errors import TransientDetectionFailure
from focus_companion.session import Settings
from focus_companion.signals import FaceObservation, ObjectDetection


# ── Event loop with a hand-cranked clock ────────────────────
class FakeHandle:
    def __init__(self, when, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    def __init__(self, start=1000.0):
        self.now = start
        self._queue = []
        self._seq = 0

    def time(self):
        return self.now

    def call_later(self, delay, callback, *args):
        handle = FakeHandle(self.now + delay, callback, args)
        self._seq += 1
        heapq.heappush(self._queue, (handle.when, self._seq, handle))
        return handle

    def advance(self, seconds):
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.now = max(self.now, when)
            handle.callback(*handle.args)
        self.now = target

    def pending(self):
        return [h for _, _, h in self._queue if not h.cancelled]


# ── Recording collaborators ─────────────────────────────────
class FakeVoice:
    def __init__(self):
        self.spoken = []
        self.closed = False

    def speak(self, text, urgent=False):
        self.spoken.append((text, urgent))
        return True

    def close(self):
        self.closed = True

    @property
    def texts(self):
        return [t for t, _ in self.spoken]


class FakeLedger:
    def __init__(self):
        self.distractions = []
        self.xp = 0
        self.session_id = None
        self.closed = False

    def add_distraction(self, source="unknown"):
        self.distractions.append(source)

    def add_xp(self, amount):
        self.xp += amount

    def begin_session(self):
        self.session_id = 1
        return 1

    def end_session(self, focus_minutes):
        xp = int(math.floor(focus_minutes * 2))
        self.add_xp(xp)
        self.session_id = None
        return {"focus_minutes": focus_minutes, "distractions": len(self.distractions),
                "xp_awarded": xp, "xp": self.xp, "level": self.xp // 100 + 1}

    def stats(self):
        return {"total_distractions": len(self.distractions), "xp": self.xp}

    def recent_distractions(self, limit=50):
        return [{"source": s} for s in self.distractions[-limit:]]

    def close(self):
        self.closed = True


# ── Synthetic faces ─────────────────────────────────────────
def transform_matrix(yaw=0.0, pitch=0.0, roll=0.0):
    """Ry(yaw) · Rx(pitch) · Rz(roll) as a 4x4 row-major transform."""
    a, b, c = (math.radians(v) for v in (yaw, pitch, roll))
    ry = np.array([[math.cos(a), 0, math.sin(a)], [0, 1, 0], [-math.sin(a), 0, math.cos(a)]])
    rx = np.array([[1, 0, 0], [0, math.cos(b), -math.sin(b)], [0, math.sin(b), math.cos(b)]])
    rz = np.array([[math.cos(c), -math.sin(c), 0], [math.sin(c), math.cos(c), 0], [0, 0, 1]])
    m = np.eye(4)
    m[:3, :3] = ry @ rx @ rz
    return m


def make_face(yaw=0.0, pitch=0.0, roll=0.0, nose=0.5, mar=0.2, width=640, height=480):
    """Landmarks with eye line at y=0.4, chin at y=0.8 and the nose `nose` of the way down."""
    lm = np.zeros((478, 3))
    lm[33] = (0.40, 0.40, 0)
    lm[263] = (0.60, 0.40, 0)
    lm[152] = (0.50, 0.80, 0)
    lm[1] = (0.50, 0.40 + 0.40 * nose, 0)
    lm[61] = (0.45, 0.70, 0)
    lm[291] = (0.55, 0.70, 0)
    gap = mar * (0.10 * width) / height
    for upper, lower in ((13, 14), (37, 84), (267, 314)):
        lm[upper] = (0.50, 0.70 - gap / 2, 0)
        lm[lower] = (0.50, 0.70 + gap / 2, 0)
    return FaceObservation(landmarks=lm, matrix=transform_matrix(yaw, pitch, roll),
                           width=width, height=height)


def make_hands(*wrist_ys):
    hands = []
    for y in wrist_ys:
        hand = np.zeros((21, 3))
        hand[0] = (0.5, y, 0)
        hands.append(hand)
    return hands


PHONE = [ObjectDetection(label="cell phone", score=0.9)]


# ── Scripted camera and detectors ───────────────────────────
class Scene:
    """What the fake detectors report on the next tick."""

    def __init__(self):
        self.face = make_face()
        self.objects = []
        self.hands = []
        self.fail = False
        self.error = None
        self.calls = 0


class FakeCamera:
    def __init__(self, error=None, on_start=None):
        self.error = error
        self.on_start = on_start
        self.ready = True
        self.started = 0
        self.stopped = 0

    def start(self):
        self.started += 1
        if self.on_start is not None:
            self.on_start()
        if self.error is not None:
            raise self.error
        return self

    def read(self):
        if not self.ready:
            return False, None
        return True, np.zeros((4, 4, 3), dtype=np.uint8)

    def stop(self):
        self.stopped += 1


class _SceneDetector:
    def __init__(self, scene, attr):
        self.scene = scene
        self.attr = attr

    def detect(self, frame, timestamp_ms):
        if self.attr == "face":
            self.scene.calls += 1
        if self.scene.error is not None:
            raise self.scene.error
        if self.scene.fail:
            raise TransientDetectionFailure("scripted failure")
        return getattr(self.scene, self.attr)

    def close(self):
        pass


class FakeDetectors:
    def __init__(self, scene):
        self.face = _SceneDetector(scene, "face")
        self.phone = _SceneDetector(scene, "objects")
        self.hands = _SceneDetector(scene, "hands")
        self.closed = 0

    def close(self):
        self.closed += 1


# ── Fixtures ────────────────────────────────────────────────
@pytest.fixture
def loop():
    return FakeLoop()


@pytest.fixture
def voice():
    return FakeVoice()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def settings():
    return Settings(
        monitoring_enabled=True,
        posture_monitoring_enabled=True,
        demon_mode_enabled=True,
        sound_enabled=True,
        posture_debug_enabled=True,
    )


@pytest.fixture
def scene():
    return Scene()


@pytest.fixture
def no_api_key(monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", "")
