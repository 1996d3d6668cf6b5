"""Debounce timers, alert priority / rate limit, phone penalty latch, yawn telemetry."""

from focus_companion import config
from focus_companion.debounce import ConditionTimer, PostureMonitor
from focus_companion.signals import DetectionFrame, HeadAngles

T0 = 100.0


def tracking(forward=True, straight=True, down=False, phone=False, hands_up=None, mar=0.2):
    return DetectionFrame(
        status=config.STATUS_TRACKING,
        has_face=True,
        has_phone=phone,
        hands_detected=2 if hands_up is not None else 0,
        hands_up=hands_up,
        angles=HeadAngles(0.0, 0.0, 0.0),
        deltas=HeadAngles(0.0, 0.0, 0.0),
        nose_ratio=0.5,
        is_looking_forward=forward,
        is_sitting_straight=straight,
        is_looking_down=down,
        mar=mar,
    )


def no_face(phone=False, hands_up=None):
    return DetectionFrame(status=config.STATUS_NO_FACE, has_phone=phone, hands_up=hands_up)


def calibrating():
    return DetectionFrame(status=config.STATUS_CALIBRATING, has_face=True,
                          angles=HeadAngles(0.0, 0.0, 0.0), nose_ratio=0.5)


def test_condition_timer_sets_once_and_clears_instantly():
    timer = ConditionTimer("x")
    timer.update(True, 1.0)
    timer.update(True, 2.0)
    assert timer.since == 1.0
    assert timer.elapsed(4.0) == 3.0
    timer.update(False, 5.0)
    assert timer.since is None
    assert not timer.exceeded(100.0, 1.0)


def test_looking_down_alert_after_twenty_seconds_strictly(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    mon.update(tracking(down=True), T0)
    assert mon.update(tracking(down=True), T0 + 20.0) is None
    assert mon.update(tracking(down=True), T0 + 20.4) == "LOOKING_DOWN"
    assert voice.spoken == [(config.POSTURE_MESSAGES["LOOKING_DOWN"], True)]
    assert ledger.distractions == ["looking_down"]


def test_flicker_restarts_the_timer(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    for t in range(0, 20):
        mon.update(tracking(down=True), T0 + t)
    mon.update(tracking(down=False), T0 + 19.5)
    assert mon.looking_down.since is None
    mon.update(tracking(down=True), T0 + 20.0)
    assert mon.looking_down.since == T0 + 20.0
    assert mon.update(tracking(down=True), T0 + 30.0) is None
    assert voice.spoken == []


def test_priority_down_then_gaze_then_posture(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    bad = tracking(forward=False, straight=False, down=True)
    mon.update(bad, T0)
    assert mon.update(bad, T0 + 200.0) == "LOOKING_DOWN"
    assert len(voice.spoken) == 1

    mon2 = PostureMonitor(voice, ledger)
    mon2.update(tracking(forward=False, straight=False), T0)
    assert mon2.update(tracking(forward=False, straight=False), T0 + 181.0) == "GAZE_AWAY"

    mon3 = PostureMonitor(voice, ledger)
    mon3.update(tracking(straight=False), T0)
    assert mon3.update(tracking(straight=False), T0 + 180.0) is None
    assert mon3.update(tracking(straight=False), T0 + 181.0) == "POSTURE"


def test_global_rate_limit_fifteen_seconds(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    fired = []
    t = T0
    while t < T0 + 300:
        if mon.update(tracking(forward=False, down=True), t):
            fired.append(t)
        t += 0.5
    assert len(fired) > 2
    for a, b in zip(fired, fired[1:]):
        assert b - a >= config.ALERT_REPEAT


def test_no_face_counts_as_looking_away(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    mon.update(tracking(straight=False, down=True), T0)
    mon.update(no_face(), T0 + 1)
    assert mon.gaze_away.since == T0 + 1
    assert mon.posture_bad.since is None
    assert mon.looking_down.since is None


def test_calibration_ticks_leave_face_timers_alone(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    mon.update(tracking(forward=False), T0)
    mon.update(calibrating(), T0 + 1)
    assert mon.gaze_away.since == T0


# ── Phone penalty ───────────────────────────────────────────
def hold_phone(mon, start, seconds, step=0.5, **kwargs):
    t = start
    while t <= start + seconds:
        mon.update(tracking(phone=True, **kwargs), t)
        t += step
    return t


def test_phone_latches_after_five_seconds(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    mon.update(tracking(phone=True), T0)
    mon.update(tracking(phone=True), T0 + 5.0)
    assert not mon.phone_penalty_active
    assert mon.update(tracking(phone=True), T0 + 5.5) == "PHONE"
    assert mon.phone_penalty_active
    assert ledger.distractions == ["phone"]
    assert voice.spoken == [(config.POSTURE_MESSAGES["PHONE"], True)]


def test_latched_penalty_repeats_warning_and_suppresses_alerts(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    mon.update(tracking(phone=True, down=True), T0)
    mon.update(tracking(phone=True, down=True), T0 + 5.5)
    assert mon.phone_penalty_active

    spoken = []
    t = T0 + 6.0
    while t <= T0 + 40.0:
        key = mon.update(tracking(phone=True, down=True), t)
        if key:
            spoken.append((key, t))
        t += 0.5
    assert spoken
    assert all(key == "PHONE_REPEAT" for key, _ in spoken)
    times = [t for _, t in spoken]
    for a, b in zip(times, times[1:]):
        assert b - a >= config.PHONE_WARNING_REPEAT
    assert ledger.distractions == ["phone"]


def test_penalty_clears_after_two_seconds_of_raised_hands(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    mon.update(tracking(phone=True), T0)
    mon.update(tracking(phone=True), T0 + 5.5)

    mon.update(tracking(hands_up=True), T0 + 10.0)
    mon.update(tracking(hands_up=True), T0 + 11.0)
    assert mon.phone_penalty_active
    mon.update(tracking(hands_up=True), T0 + 12.0)
    assert not mon.phone_penalty_active
    assert ledger.distractions == ["phone"]
    assert all(timer.since is None for timer in mon.timers)


def test_interrupted_hands_restart_the_clear_window(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    mon.update(tracking(phone=True), T0)
    mon.update(tracking(phone=True), T0 + 5.5)

    mon.update(tracking(hands_up=True), T0 + 10.0)
    mon.update(tracking(hands_up=True), T0 + 11.5)
    mon.update(tracking(hands_up=None), T0 + 11.8)
    mon.update(tracking(hands_up=True), T0 + 12.0)
    mon.update(tracking(hands_up=True), T0 + 13.5)
    assert mon.phone_penalty_active
    mon.update(tracking(hands_up=True), T0 + 14.0)
    assert not mon.phone_penalty_active


def test_hands_up_with_phone_visible_does_not_clear(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    end = hold_phone(mon, T0, 6.0)
    hold_phone(mon, end, 10.0, hands_up=True)
    assert mon.phone_penalty_active


def test_reset_clears_everything(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    hold_phone(mon, T0, 6.0, down=True)
    mon.reset()
    assert not mon.phone_penalty_active
    assert mon.last_alert is None
    assert all(timer.since is None for timer in mon.timers)


# ── Yawns ───────────────────────────────────────────────────
def yawn(mon, start):
    for dt in (0.0, 0.5, 1.0, 1.5):
        mon.update(tracking(mar=0.8), start + dt)
    mon.update(tracking(mar=0.2), start + 2.0)


def test_yawn_counted_once_per_sustained_open_mouth(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    mon.update(tracking(mar=0.8), T0)
    mon.update(tracking(mar=0.8), T0 + 0.5)
    assert mon.yawn_count == 0 and not mon.is_yawning
    mon.update(tracking(mar=0.8), T0 + 1.0)
    mon.update(tracking(mar=0.8), T0 + 1.5)
    assert mon.is_yawning
    assert mon.yawn_count == 1


def test_three_yawns_in_window_is_drowsy_and_silent(voice, ledger):
    mon = PostureMonitor(voice, ledger)
    for start in (T0, T0 + 30, T0 + 60):
        yawn(mon, start)
    assert mon.yawn_count == 3
    assert mon.is_drowsy
    assert voice.spoken == []

    mon.update(tracking(), T0 + 40 + config.YAWN_WINDOW)
    assert mon.yawn_count == 1
    assert not mon.is_drowsy
