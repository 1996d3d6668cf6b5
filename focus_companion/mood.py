"""
============================================================
 Focus Companion — Mood Escalation
 The single authority over a session's mood:

   happy → suspicious → angry → demon

 Two drift causes can arm the three-link timer chain. Only one
 chain is armed at a time; arming one cancels the other.

   IDLE    on-topic but no input activity. Reset by any activity.
   TOPIC   notes are off-topic. Survives activity.

 A hidden tab jumps straight to demon. Demon only ends with an
 apology: the fixed phrase, case-insensitive, trimmed.

 Mutators: record_activity, record_topic_state,
           record_visibility, submit_apology
============================================================
"""

import functools
import logging
import random

from focus_companion import config

logger = logging.getLogger(__name__)

# ── Moods ───────────────────────────────────────────────────
HAPPY = "happy"
SUSPICIOUS = "suspicious"
ANGRY = "angry"
DEMON = "demon"
LADDER = (HAPPY, SUSPICIOUS, ANGRY, DEMON)

# ── Drift causes ────────────────────────────────────────────
CAUSE_IDLE = "idle"
CAUSE_TOPIC = "topic"


class TimerChain:
    """The pending rung of one cause's ladder. cancel() is idempotent."""

    def __init__(self, cause: str) -> None:
        self.cause = cause
        self.handle = None
        self.cancelled = False

    @property
    def armed(self) -> bool:
        return not self.cancelled and self.handle is not None

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None
        self.cancelled = True


class MoodEngine:

    def __init__(self, loop, settings, voice, ledger, delays=None,
                 rng=None, on_change=None) -> None:
        self.loop = loop
        self.settings = settings
        self.voice = voice
        self.ledger = ledger
        self.delays = tuple(delays or (
            config.SUSPICIOUS_DELAY, config.ANGRY_DELAY, config.DEMON_DELAY,
        ))
        self.rng = rng or random.Random()
        self.on_change = on_change

        self.mood = HAPPY
        self.title = config.TITLE_DEFAULT
        self.apology_attempts = 0
        self.active = False
        self.on_topic = True
        self.last_activity: float | None = None

        self.chain: TimerChain | None = None
        self._nag = None

    # ── Read side ────────────────────────────────────────────
    @property
    def is_locked(self) -> bool:
        return self.mood == DEMON and bool(self.settings.demon_mode_enabled)

    @property
    def armed_cause(self) -> str | None:
        if self.chain is not None and self.chain.armed:
            return self.chain.cause
        return None

    def status(self) -> dict:
        return {
            "mood": self.mood,
            "is_locked": self.is_locked,
            "title": self.title,
            "apology_attempts": self.apology_attempts,
            "drift_cause": self.armed_cause,
            "on_topic": self.on_topic,
        }

    def _enabled(self) -> bool:
        return bool(self.active and self.settings.demon_mode_enabled
                    and self.settings.monitoring_enabled)

    # ── Lifecycle ────────────────────────────────────────────
    def start(self) -> None:
        self.cancel_all()
        self.active = True
        self.on_topic = True
        self.apology_attempts = 0
        self.last_activity = self.loop.time()
        self._set_mood(HAPPY)
        self.title = config.TITLE_DEFAULT
        self.refresh()

    def stop(self) -> None:
        self.cancel_all()
        self.active = False
        self.apology_attempts = 0
        self._set_mood(HAPPY)
        self.title = config.TITLE_DEFAULT

    def refresh(self) -> None:
        """Re-read settings: disarm when disabled, re-arm when re-enabled."""
        if not self._enabled():
            self.cancel_all()
            return
        if self.mood != DEMON and self.armed_cause is None:
            self._arm(CAUSE_IDLE if self.on_topic else CAUSE_TOPIC)

    def cancel_all(self) -> None:
        self._cancel_chain()
        self._cancel_nag()

    def _cancel_chain(self) -> None:
        if self.chain is not None:
            self.chain.cancel()
            self.chain = None

    # ── Mutators ─────────────────────────────────────────────
    def record_activity(self) -> None:
        if not self._enabled() or self.mood == DEMON:
            return
        self.last_activity = self.loop.time()
        if self.armed_cause == CAUSE_TOPIC:
            return
        self._set_mood(HAPPY)
        self._arm(CAUSE_IDLE)

    def record_topic_state(self, on_topic: bool) -> None:
        self.on_topic = bool(on_topic)
        if not self._enabled() or self.mood == DEMON:
            return
        if not self.on_topic:
            if self.armed_cause != CAUSE_TOPIC:
                self._arm(CAUSE_TOPIC)
        elif self.armed_cause != CAUSE_IDLE:
            self._arm(CAUSE_IDLE)

    def record_visibility(self, hidden: bool) -> None:
        if not self._enabled() or not hidden:
            return
        self._cancel_chain()
        if self.mood == DEMON:
            self.ledger.add_distraction(source="visibility")
        self._set_mood(DEMON, source="visibility", title=config.TITLE_HIDDEN)

    def submit_apology(self, text: str) -> bool:
        if self.mood != DEMON:
            return False
        if (text or "").strip().lower() == config.APOLOGY_PHRASE:
            logger.info("[MOOD] Apology accepted")
            self.apology_attempts = 0
            self.cancel_all()
            self.last_activity = self.loop.time()
            self._set_mood(HAPPY)
            self.refresh()
            return True

        self.apology_attempts += 1
        logger.info("[MOOD] Apology rejected (%d/%d)", self.apology_attempts, config.APOLOGY_MAX_ATTEMPTS)
        if self.apology_attempts >= config.APOLOGY_MAX_ATTEMPTS:
            self.ledger.add_distraction(source="apology")
            self.apology_attempts = 0
        return False

    # ── Timer chain ──────────────────────────────────────────
    def _arm(self, cause: str) -> None:
        if self.chain is not None:
            self.chain.cancel()
        chain = TimerChain(cause)
        self.chain = chain
        self._schedule_link(chain, 0)
        logger.debug("[MOOD] %s drift chain armed", cause)

    def _schedule_link(self, chain: TimerChain, index: int) -> None:
        chain.handle = self.loop.call_later(
            self.delays[index], functools.partial(self._advance, chain, index)
        )

    def _advance(self, chain: TimerChain, index: int) -> None:
        if chain is not self.chain or chain.cancelled:
            return
        chain.handle = None
        if not self._enabled():
            self.cancel_all()
            return

        # Each link only moves the mood one rung, and only from the rung below.
        if self.mood == LADDER[index]:
            self._set_mood(LADDER[index + 1], source=chain.cause)
        if index + 1 < len(self.delays) and self.chain is chain:
            self._schedule_link(chain, index + 1)

    # ── Transitions ──────────────────────────────────────────
    def _set_mood(self, mood: str, source: str | None = None, title: str | None = None) -> None:
        previous = self.mood
        if title is not None:
            self.title = title
        elif mood != DEMON:
            self.title = config.TITLE_DEFAULT
        if mood == previous:
            if title is not None:
                self._notify()
            return

        self.mood = mood
        self._cancel_nag()
        logger.info("[MOOD] %s → %s%s", previous, mood, f" ({source})" if source else "")

        if LADDER.index(mood) > LADDER.index(previous):
            if mood == DEMON:
                self.ledger.add_distraction(source=source or "mood")
            self._shout(mood)
            if mood in (ANGRY, DEMON):
                self._schedule_nag()
        self._notify()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self.status())

    def _shout(self, mood: str) -> None:
        if not (self.active and self.settings.monitoring_enabled):
            return
        line = self.rng.choice(config.MOOD_DIALOGUES[mood])
        self.voice.speak(line, mood in (ANGRY, DEMON))

    def _schedule_nag(self) -> None:
        interval = config.DEMON_NAG_INTERVAL if self.mood == DEMON else config.ANGRY_NAG_INTERVAL
        self._nag = self.loop.call_later(interval, self._nag_tick)

    def _nag_tick(self) -> None:
        self._nag = None
        if not (self.active and self.settings.monitoring_enabled):
            return
        if self.mood not in (ANGRY, DEMON):
            return
        self._shout(self.mood)
        self._schedule_nag()

    def _cancel_nag(self) -> None:
        if self._nag is not None:
            self._nag.cancel()
            self._nag = None
