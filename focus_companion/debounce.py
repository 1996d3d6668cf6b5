"""
============================================================
 Focus Companion — Debounce & Phone Penalty
 Momentary booleans  →  sustained alerts.

 Each monitored condition keeps a nullable "since" timestamp.
 It is set when the condition turns true and cleared the instant
 it turns false. An alert fires once the condition has held for
 longer than its threshold:

   looking-down  20 s   (highest priority)
   gaze-away    180 s
   posture-bad  180 s

 One alert per tick, and none within ALERT_REPEAT of the last.

 The phone penalty is a latch: 5 s of visible phone enters it,
 only 2 s of "phone gone + both hands up" leaves it.
============================================================
"""

import logging
from collections import deque

from focus_companion import config
from focus_companion.signals import DetectionFrame

logger = logging.getLogger(__name__)


class ConditionTimer:
    """Nullable "since" timestamp for one condition. No grace period on clearing."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.since: float | None = None

    def update(self, condition: bool, now: float) -> None:
        if condition:
            if self.since is None:
                self.since = now
        else:
            self.since = None

    def clear(self) -> None:
        self.since = None

    def elapsed(self, now: float) -> float:
        return 0.0 if self.since is None else now - self.since

    def exceeded(self, now: float, threshold: float) -> bool:
        return self.since is not None and now - self.since > threshold


class PostureMonitor:
    """
    Turns DetectionFrames into spoken alerts and distraction events.
    `now` is always supplied by the caller so the machine stays clock-agnostic.
    """

    def __init__(self, voice, ledger, messages: dict | None = None) -> None:
        self.voice = voice
        self.ledger = ledger
        self.messages = messages or config.POSTURE_MESSAGES

        self.gaze_away = ConditionTimer("gaze_away")
        self.posture_bad = ConditionTimer("posture_bad")
        self.looking_down = ConditionTimer("looking_down")
        self.phone_visible = ConditionTimer("phone_visible")
        self.phone_cleared = ConditionTimer("phone_cleared")

        self.phone_penalty_active = False
        self.last_alert: float | None = None
        self._last_phone_warning: float | None = None

        # Yawn telemetry
        self._mouth_open_since: float | None = None
        self._yawn_counted = False
        self._yawns: deque = deque()
        self.is_yawning = False

    # ── Public API ───────────────────────────────────────────
    @property
    def timers(self) -> tuple:
        return (self.gaze_away, self.posture_bad, self.looking_down,
                self.phone_visible, self.phone_cleared)

    @property
    def yawn_count(self) -> int:
        return len(self._yawns)

    @property
    def is_drowsy(self) -> bool:
        return len(self._yawns) >= config.DROWSY_YAWN_COUNT

    def reset(self) -> None:
        for timer in self.timers:
            timer.clear()
        self.phone_penalty_active = False
        self.last_alert = None
        self._last_phone_warning = None
        self._mouth_open_since = None
        self._yawn_counted = False
        self._yawns.clear()
        self.is_yawning = False

    def update(self, frame: DetectionFrame, now: float) -> str | None:
        """
        Feed one processed tick. Returns the key of the message spoken on
        this tick (an alert or a phone warning), or None.
        """
        self.phone_visible.update(frame.has_phone, now)

        if not frame.has_face:
            # Nobody at the screen counts as looking away.
            self.gaze_away.update(True, now)
            self.posture_bad.update(False, now)
            self.looking_down.update(False, now)
        elif frame.is_tracking:
            self.gaze_away.update(not frame.is_looking_forward, now)
            self.posture_bad.update(not frame.is_sitting_straight, now)
            self.looking_down.update(bool(frame.is_looking_down), now)

        self._update_yawn(frame, now)

        handled, spoken = self._update_phone_penalty(frame, now)
        if handled:
            return spoken

        for key, timer, threshold in (
            ("LOOKING_DOWN", self.looking_down, config.LOOKING_DOWN_ALERT),
            ("GAZE_AWAY", self.gaze_away, config.GAZE_ALERT),
            ("POSTURE", self.posture_bad, config.POSTURE_ALERT),
        ):
            if timer.exceeded(now, threshold):
                return key if self._maybe_alert(key, now) else None
        return None

    # ── Internals ────────────────────────────────────────────
    def _maybe_alert(self, key: str, now: float) -> bool:
        if self.last_alert is not None and now - self.last_alert < config.ALERT_REPEAT:
            return False
        self.last_alert = now
        logger.info("[POSTURE] Alert %s", key)
        self.voice.speak(self.messages[key], True)
        self.ledger.add_distraction(source=key.lower())
        return True

    def _update_phone_penalty(self, frame: DetectionFrame, now: float) -> tuple:
        """Returns (handled, spoken_key). handled=True ends the tick early."""
        if not self.phone_penalty_active:
            if not self.phone_visible.exceeded(now, config.PHONE_ALERT):
                return False, None
            self.phone_penalty_active = True
            self.phone_cleared.clear()
            self._last_phone_warning = now
            logger.info("[POSTURE] Phone penalty latched")
            self.voice.speak(self.messages["PHONE"], True)
            self.ledger.add_distraction(source="phone")
            return True, "PHONE"

        self.phone_cleared.update(not frame.has_phone and frame.hands_up is True, now)
        if self.phone_cleared.since is not None and \
                now - self.phone_cleared.since >= config.PHONE_CLEAR:
            self.phone_penalty_active = False
            self._last_phone_warning = None
            for timer in self.timers:
                timer.clear()
            logger.info("[POSTURE] Phone penalty cleared")
            return True, None

        if now - self._last_phone_warning >= config.PHONE_WARNING_REPEAT:
            self._last_phone_warning = now
            self.voice.speak(self.messages["PHONE_REPEAT"], True)
            return True, "PHONE_REPEAT"
        return True, None

    def _update_yawn(self, frame: DetectionFrame, now: float) -> None:
        while self._yawns and now - self._yawns[0] > config.YAWN_WINDOW:
            self._yawns.popleft()

        if not frame.has_face or frame.mar <= config.MAR_THRESHOLD:
            self._mouth_open_since = None
            self._yawn_counted = False
            self.is_yawning = False
            return

        if self._mouth_open_since is None:
            self._mouth_open_since = now
        self.is_yawning = now - self._mouth_open_since >= config.YAWN_MIN_DURATION
        if self.is_yawning and not self._yawn_counted:
            self._yawn_counted = True
            self._yawns.append(now)
            logger.debug("[POSTURE] Yawn #%d in window", len(self._yawns))
