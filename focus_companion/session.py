"""
============================================================
 Focus Companion — Session Controller
 Explicitly owns every per-session object:

   Settings ─┬─ Voice (alert sink)
             ├─ Ledger (distractions / XP)
             ├─ MoodEngine
             └─ PerceptionAdapter (camera + detectors)

 All mutators run on the event loop thread. Listeners receive
 {"type": "mood" | "posture_debug" | "session", ...} messages.
============================================================
"""

import logging
from dataclasses import asdict, dataclass, fields

from focus_companion import config
from focus_companion.camera import Camera
from focus_companion.ledger import Ledger
from focus_companion.mood import MoodEngine
from focus_companion.perception import PerceptionAdapter
from focus_companion.topic import is_on_topic
from focus_companion.voice import Voice

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    """Runtime toggles. Read at every tick / timer callback, never cached."""
    monitoring_enabled: bool = config.MONITORING_ENABLED
    posture_monitoring_enabled: bool = config.POSTURE_MONITORING_ENABLED
    demon_mode_enabled: bool = config.DEMON_MODE_ENABLED
    sound_enabled: bool = config.SOUND_ENABLED
    posture_debug_enabled: bool = config.POSTURE_DEBUG_ENABLED

    def to_dict(self) -> dict:
        return asdict(self)

    def update(self, **changes) -> list:
        """Apply known flags, ignore None. Returns the names that changed."""
        known = {f.name for f in fields(self)}
        changed = []
        for name, value in changes.items():
            if name not in known or value is None:
                continue
            if getattr(self, name) != bool(value):
                setattr(self, name, bool(value))
                changed.append(name)
        return changed


class SessionController:

    def __init__(self, settings: Settings | None = None, voice=None, ledger=None,
                 camera_factory=Camera, detector_factory=None, rng=None) -> None:
        self.settings = settings or Settings()
        self.voice = voice if voice is not None else Voice(self.settings)
        self.ledger = ledger if ledger is not None else Ledger()
        self._camera_factory = camera_factory
        self._detector_factory = detector_factory
        self._rng = rng

        self.loop = None
        self.mood: MoodEngine | None = None
        self.perception: PerceptionAdapter | None = None
        self.listeners: list = []

        self.active = False
        self.started_at: float | None = None
        self.notes = ""
        self.subject_keywords: list = []
        self.whitelist_keywords: list = []
        self.last_summary: dict | None = None

    def bind_loop(self, loop) -> None:
        """Build the loop-bound engines. Called once the event loop is running."""
        self.loop = loop
        self.mood = MoodEngine(
            loop, self.settings, self.voice, self.ledger,
            rng=self._rng, on_change=self._on_mood_change,
        )
        self.perception = PerceptionAdapter(
            self.settings, self.voice, self.ledger, loop=loop,
            camera_factory=self._camera_factory,
            detector_factory=self._detector_factory,
            on_debug=self._on_debug,
        )

    # ── Listeners ────────────────────────────────────────────
    def add_listener(self, callback) -> None:
        self.listeners.append(callback)

    def remove_listener(self, callback) -> None:
        if callback in self.listeners:
            self.listeners.remove(callback)

    def _emit(self, message: dict) -> None:
        for callback in list(self.listeners):
            callback(message)

    def _on_mood_change(self, status: dict) -> None:
        self._emit({"type": "mood", **status})

    def _on_debug(self, snapshot: dict) -> None:
        if self.settings.posture_debug_enabled:
            self._emit({"type": "posture_debug", **snapshot})

    # ── Session lifecycle ────────────────────────────────────
    def _perception_wanted(self) -> bool:
        return bool(self.active and self.settings.monitoring_enabled
                    and self.settings.posture_monitoring_enabled)

    async def start_session(self) -> dict:
        if self.active:
            return self.status()
        self.active = True
        self.started_at = self.loop.time()
        self.last_summary = None
        self.ledger.begin_session()
        self.mood.start()
        logger.info("[SESSION] Started (session=%s)", self.ledger.session_id)
        self._emit({"type": "session", "active": True})
        if self._perception_wanted():
            await self.perception.start()
        return self.status()

    async def end_session(self) -> dict:
        """Stop perception (camera released first), cancel mood timers, award XP."""
        if not self.active:
            return self.last_summary or {}
        self.perception.stop()
        self.mood.stop()
        minutes = max(self.loop.time() - self.started_at, 0.0) / 60.0
        self.active = False
        self.started_at = None
        self.last_summary = self.ledger.end_session(minutes)
        logger.info("[SESSION] Ended: %.1f min, %d distractions, +%d XP",
                    minutes, self.last_summary["distractions"], self.last_summary["xp_awarded"])
        self._emit({"type": "session", "active": False, **self.last_summary})
        return self.last_summary

    async def update_settings(self, **changes) -> dict:
        changed = self.settings.update(**changes)
        if changed:
            logger.info("[SESSION] Settings changed: %s", ", ".join(changed))
        if not self.active:
            return self.settings.to_dict()
        self.mood.refresh()
        if self._perception_wanted():
            if not self.perception.is_running:
                await self.perception.start()
        elif self.perception.is_running:
            self.perception.stop()
        return self.settings.to_dict()

    # ── Signals from the page ────────────────────────────────
    def record_activity(self) -> None:
        self.mood.record_activity()

    def record_visibility(self, hidden: bool) -> None:
        self.mood.record_visibility(hidden)

    def update_notes(self, notes: str, keywords=None, whitelist=None) -> bool:
        self.notes = notes or ""
        if keywords is not None:
            self.subject_keywords = list(keywords)
        if whitelist is not None:
            self.whitelist_keywords = list(whitelist)
        on_topic = is_on_topic(self.notes, self.subject_keywords, self.whitelist_keywords)
        self.mood.record_topic_state(on_topic)
        return on_topic

    def submit_apology(self, text: str) -> dict:
        accepted = self.mood.submit_apology(text)
        return {"accepted": accepted, "attempts": self.mood.apology_attempts}

    # ── Read side ────────────────────────────────────────────
    def focus_minutes(self) -> float:
        if not self.active or self.started_at is None:
            return 0.0
        return max(self.loop.time() - self.started_at, 0.0) / 60.0

    def status(self) -> dict:
        mood = self.mood.status() if self.mood is not None else {}
        perception = self.perception
        return {
            "session_active": self.active,
            "focus_minutes": round(self.focus_minutes(), 2),
            **mood,
            "monitor_status": perception.status if perception else config.STATUS_INACTIVE,
            "monitor_error": perception.error if perception else None,
            "posture_debug": perception.debug if perception else None,
            "ledger": self.ledger.stats(),
            "settings": self.settings.to_dict(),
            "last_summary": self.last_summary,
        }

    async def shutdown(self) -> None:
        if self.active:
            await self.end_session()
        if self.perception is not None:
            self.perception.stop()
        self.voice.close()
        self.ledger.close()
