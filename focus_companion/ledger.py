"""
============================================================
 Focus Companion — Distraction Ledger
 Counts distractions and XP, and persists every event and
 study session via SQLAlchemy. Writes are fire-and-forget:
 a failed commit is rolled back and logged, never raised.
============================================================
"""

import logging
import math
from datetime import datetime

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, create_engine, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from focus_companion import config

logger = logging.getLogger(__name__)

Base = declarative_base()


class StudySession(Base):
    """One focus session, from start to end."""
    __tablename__ = "study_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    start_time = Column(DateTime, default=datetime.utcnow, nullable=False)
    end_time = Column(DateTime, nullable=True)
    focus_minutes = Column(Float, nullable=True)
    distractions = Column(Integer, default=0)
    xp_awarded = Column(Integer, default=0)

    def __repr__(self):
        return f"<StudySession #{self.id} from {self.start_time}>"

    def to_dict(self):
        return {
            "id": self.id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "focus_minutes": self.focus_minutes,
            "distractions": self.distractions,
            "xp_awarded": self.xp_awarded,
        }


class DistractionEvent(Base):
    """A single distraction: posture alert, phone, hidden tab, mood escalation..."""
    __tablename__ = "distractions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    source = Column(String(50), nullable=False)
    session_id = Column(Integer, ForeignKey("study_sessions.id"), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "source": self.source,
            "session_id": self.session_id,
        }


class XpAward(Base):
    __tablename__ = "xp_awards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)
    amount = Column(Integer, nullable=False)
    session_id = Column(Integer, ForeignKey("study_sessions.id"), nullable=True)


def level_for_xp(xp: int) -> int:
    return xp // config.XP_PER_LEVEL + 1


def xp_for_minutes(minutes: float) -> int:
    return int(math.floor(max(minutes, 0.0) * config.XP_PER_FOCUS_MINUTE))


class Ledger:
    """Owned by the session controller; one per process or per test."""

    def __init__(self, database_uri: str = config.DATABASE_URI) -> None:
        if database_uri in ("sqlite://", "sqlite:///:memory:"):
            self.engine = create_engine(
                database_uri, echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(database_uri, echo=False)
        Base.metadata.create_all(self.engine)
        self.Session = scoped_session(sessionmaker(bind=self.engine))

        self.session_id: int | None = None
        self.session_distractions = 0
        self.total_distractions = 0
        self.xp = 0
        self._load_totals()

    # ── Totals ───────────────────────────────────────────────
    def _load_totals(self) -> None:
        session = self.Session()
        try:
            self.total_distractions = session.query(func.count(DistractionEvent.id)).scalar() or 0
            self.xp = int(session.query(func.sum(XpAward.amount)).scalar() or 0)
        except SQLAlchemyError as e:
            logger.warning("[LEDGER] Could not load totals: %s", e)
        finally:
            self.Session.remove()

    @property
    def level(self) -> int:
        return level_for_xp(self.xp)

    def stats(self) -> dict:
        return {
            "session_id": self.session_id,
            "session_distractions": self.session_distractions,
            "total_distractions": self.total_distractions,
            "xp": self.xp,
            "level": self.level,
        }

    # ── Collaborator contract ────────────────────────────────
    def add_distraction(self, source: str = "unknown") -> None:
        self.session_distractions += 1
        self.total_distractions += 1
        logger.info("[LEDGER] Distraction (%s), session total %d", source, self.session_distractions)
        self._write(DistractionEvent(source=source, session_id=self.session_id))

    def add_xp(self, amount: int) -> None:
        amount = int(amount)
        if amount <= 0:
            return
        self.xp += amount
        self._write(XpAward(amount=amount, session_id=self.session_id))

    # ── Sessions ─────────────────────────────────────────────
    def begin_session(self) -> int | None:
        self.session_distractions = 0
        record = StudySession()
        session = self.Session()
        try:
            session.add(record)
            session.commit()
            self.session_id = record.id
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("[LEDGER] Failed to record session start: %s", e)
            self.session_id = None
        finally:
            self.Session.remove()
        return self.session_id

    def end_session(self, focus_minutes: float) -> dict:
        """Close the current session and award XP for the minutes focused."""
        xp = xp_for_minutes(focus_minutes)
        self.add_xp(xp)
        summary = {
            "session_id": self.session_id,
            "focus_minutes": round(focus_minutes, 2),
            "distractions": self.session_distractions,
            "xp_awarded": xp,
            "xp": self.xp,
            "level": self.level,
        }

        if self.session_id is not None:
            session = self.Session()
            try:
                record = session.get(StudySession, self.session_id)
                if record is not None:
                    record.end_time = datetime.utcnow()
                    record.focus_minutes = focus_minutes
                    record.distractions = self.session_distractions
                    record.xp_awarded = xp
                    session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.error("[LEDGER] Failed to close session: %s", e)
            finally:
                self.Session.remove()

        self.session_id = None
        return summary

    def recent_distractions(self, limit: int = 50) -> list:
        session = self.Session()
        try:
            events = (
                session.query(DistractionEvent)
                .order_by(DistractionEvent.id.desc())
                .limit(limit)
                .all()
            )
            return [e.to_dict() for e in events]
        finally:
            self.Session.remove()

    def close(self) -> None:
        self.Session.remove()
        self.engine.dispose()

    def _write(self, row) -> None:
        session = self.Session()
        try:
            session.add(row)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("[LEDGER] Write failed: %s", e)
        finally:
            self.Session.remove()
