"""
============================================================
 Focus Companion — Signal Extractor
 Raw detector output  →  calibrated booleans.

   • Head angles from the facial transformation matrix
   • Nose vertical ratio (eye line → chin)
   • Phone visibility from labelled object boxes
   • Hands-up from the two wrist landmarks
   • Mouth aspect ratio (yawn telemetry)

 Nothing here is authoritative until the per-session Baseline
 has been averaged from CALIBRATION_FRAMES valid frames.
============================================================
"""

import math
from dataclasses import dataclass

import numpy as np

from focus_companion import config

# ── Landmark indices ────────────────────────────────────────
RIGHT_EYE_CORNER = 33
LEFT_EYE_CORNER = 263
NOSE_TIP_IDX = 1
CHIN_IDX = 152
UPPER_LIP = 13
LOWER_LIP = 14
UPPER_LIP_MID_LEFT = 37
LOWER_LIP_MID_LEFT = 84
UPPER_LIP_MID_RIGHT = 267
LOWER_LIP_MID_RIGHT = 314
LEFT_MOUTH_CORNER = 61
RIGHT_MOUTH_CORNER = 291
WRIST_IDX = 0


# ── Detector results ────────────────────────────────────────
@dataclass
class FaceObservation:
    landmarks: np.ndarray   # (N, 3) normalized x, y, z
    matrix: np.ndarray      # (4, 4) facial transformation matrix
    width: int
    height: int


@dataclass
class ObjectDetection:
    label: str
    score: float


@dataclass
class HeadAngles:
    yaw: float
    pitch: float
    roll: float


@dataclass(frozen=True)
class Baseline:
    yaw: float
    pitch: float
    roll: float
    nose_ratio: float


@dataclass
class DetectionFrame:
    """One tick's aggregate. Derived booleans are None until tracking."""
    status: str
    has_face: bool = False
    has_phone: bool = False
    hands_detected: int = 0
    hands_up: bool | None = None
    angles: HeadAngles | None = None
    deltas: HeadAngles | None = None
    nose_ratio: float | None = None
    is_looking_forward: bool | None = None
    is_sitting_straight: bool | None = None
    is_looking_down: bool | None = None
    mar: float = 0.0
    calibration_frames: int = 0
    calibration_target: int = config.CALIBRATION_FRAMES

    @property
    def is_tracking(self) -> bool:
        return self.deltas is not None


# ── Pure signal functions ───────────────────────────────────
def head_angles(matrix: np.ndarray) -> HeadAngles:
    """Yaw / pitch / roll in degrees from a row-major 4x4 transform."""
    m = np.asarray(matrix, dtype=np.float64).reshape(4, 4)
    yaw = math.atan2(m[0, 2], m[2, 2])
    pitch = math.atan2(-m[1, 2], math.sqrt(m[0, 2] ** 2 + m[2, 2] ** 2))
    roll = math.atan2(m[1, 0], m[0, 0])
    return HeadAngles(
        yaw=math.degrees(yaw),
        pitch=math.degrees(pitch),
        roll=math.degrees(roll),
    )


def nose_ratio(landmarks: np.ndarray) -> float | None:
    """Where the nose tip sits between the eye line (0) and the chin (1)."""
    if landmarks is None or len(landmarks) <= CHIN_IDX:
        return None
    eye_mid_y = (landmarks[RIGHT_EYE_CORNER][1] + landmarks[LEFT_EYE_CORNER][1]) / 2.0
    denom = landmarks[CHIN_IDX][1] - eye_mid_y
    if denom <= 0:
        return None
    return float((landmarks[NOSE_TIP_IDX][1] - eye_mid_y) / denom)


def mouth_aspect_ratio(landmarks: np.ndarray, w: int, h: int) -> float:
    """MAR from three vertical lip distances over the mouth width (pixel space)."""
    if landmarks is None or len(landmarks) <= LOWER_LIP_MID_RIGHT:
        return 0.0
    coords = np.asarray(landmarks, dtype=np.float64)[:, :2] * np.array([w, h], dtype=np.float64)
    v_center = np.linalg.norm(coords[UPPER_LIP] - coords[LOWER_LIP])
    v_left = np.linalg.norm(coords[UPPER_LIP_MID_LEFT] - coords[LOWER_LIP_MID_LEFT])
    v_right = np.linalg.norm(coords[UPPER_LIP_MID_RIGHT] - coords[LOWER_LIP_MID_RIGHT])
    h_dist = np.linalg.norm(coords[LEFT_MOUTH_CORNER] - coords[RIGHT_MOUTH_CORNER])
    if h_dist <= 0:
        return 0.0
    return float(((v_center + v_left + v_right) / 3.0) / h_dist)


def has_phone(detections) -> bool:
    for det in detections or ():
        if det.score > config.PHONE_CONFIDENCE and det.label.lower() in config.PHONE_LABELS:
            return True
    return False


def hands_up(hands) -> bool | None:
    """True only for exactly two hands with both wrists high; None below two hands."""
    hands = list(hands or ())
    if len(hands) < 2:
        return None
    if len(hands) != 2:
        return False
    return all(hand[WRIST_IDX][1] < config.HANDS_UP_WRIST_Y for hand in hands)


def average_baseline(samples: list) -> Baseline:
    n = len(samples)
    return Baseline(
        yaw=sum(s[0].yaw for s in samples) / n,
        pitch=sum(s[0].pitch for s in samples) / n,
        roll=sum(s[0].roll for s in samples) / n,
        nose_ratio=sum(s[1] for s in samples) / n,
    )


class SignalExtractor:
    """Owns the calibration buffer and the Baseline of one monitoring session."""

    def __init__(self, calibration_frames: int = config.CALIBRATION_FRAMES) -> None:
        self.calibration_target = calibration_frames
        self.baseline: Baseline | None = None
        self._buffer: list = []

    @property
    def calibration_frames(self) -> int:
        if self.baseline is not None:
            return self.calibration_target
        return len(self._buffer)

    def reset(self) -> None:
        self.baseline = None
        self._buffer = []

    def process(self, face: FaceObservation | None, detections=(), hands=()) -> DetectionFrame:
        frame = DetectionFrame(
            status=config.STATUS_NO_FACE,
            has_phone=has_phone(detections),
            hands_detected=len(hands or ()),
            hands_up=hands_up(hands),
            calibration_target=self.calibration_target,
        )

        if face is None:
            frame.calibration_frames = self.calibration_frames
            return frame

        frame.has_face = True
        frame.angles = head_angles(face.matrix)
        frame.nose_ratio = nose_ratio(face.landmarks)
        frame.mar = mouth_aspect_ratio(face.landmarks, face.width, face.height)

        if self.baseline is None:
            if frame.nose_ratio is not None:
                self._buffer.append((frame.angles, frame.nose_ratio))
                if len(self._buffer) >= self.calibration_target:
                    self.baseline = average_baseline(self._buffer)
                    self._buffer = []
            frame.status = config.STATUS_CALIBRATING if self.baseline is None else config.STATUS_TRACKING
            frame.calibration_frames = self.calibration_frames
            return frame

        frame.status = config.STATUS_TRACKING
        frame.calibration_frames = self.calibration_frames
        if frame.nose_ratio is None:
            return frame

        b = self.baseline
        deltas = HeadAngles(
            yaw=frame.angles.yaw - b.yaw,
            pitch=frame.angles.pitch - b.pitch,
            roll=frame.angles.roll - b.roll,
        )
        frame.deltas = deltas
        frame.is_looking_forward = (
            abs(deltas.yaw) < config.YAW_AWAY_DEG and abs(deltas.pitch) < config.PITCH_AWAY_DEG
        )
        frame.is_sitting_straight = (
            abs(deltas.roll) < config.ROLL_SLOUCH_DEG and abs(deltas.pitch) < config.PITCH_SLOUCH_DEG
        )
        frame.is_looking_down = (
            deltas.pitch < -config.PITCH_DOWN_DEG
            or (b.nose_ratio - frame.nose_ratio) > config.NOSE_RATIO_DOWN_DELTA
        )
        return frame
