"""
============================================================
 Focus Companion — Perception Detectors
 Three independent per-frame detectors behind one contract:

   detect(frame, timestamp_ms) -> result   (raises TransientDetectionFailure)

   FaceMeshDetector    MediaPipe FaceLandmarker + transform matrix
   PhoneDetector       Ultralytics YOLO handheld-object detector
   HandDetector        MediaPipe HandLandmarker (two hands)

 Each detector is an explicitly constructed object owned by the
 perception adapter of one session.
============================================================
"""

import logging

import cv2
import numpy as np
import mediapipe as mp
from ultralytics import YOLO

from focus_companion import config
from focus_companion.errors import ModelLoadFailure, TransientDetectionFailure
from focus_companion.signals import FaceObservation, ObjectDetection

logger = logging.getLogger(__name__)

# ── MediaPipe task API ──────────────────────────────────────
BaseOptions = mp.tasks.BaseOptions
FaceLandmarker = mp.tasks.vision.FaceLandmarker
FaceLandmarkerOptions = mp.tasks.vision.FaceLandmarkerOptions
HandLandmarker = mp.tasks.vision.HandLandmarker
HandLandmarkerOptions = mp.tasks.vision.HandLandmarkerOptions
VisionRunningMode = mp.tasks.vision.RunningMode


def _to_mp_image(frame: np.ndarray) -> mp.Image:
    rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    return mp.Image(image_format=mp.ImageFormat.SRGB, data=np.ascontiguousarray(rgb))


class _VideoClock:
    """VIDEO running mode rejects timestamps that do not strictly increase."""

    def __init__(self) -> None:
        self._last = -1

    def next(self, timestamp_ms: int) -> int:
        ts = max(int(timestamp_ms), self._last + 1)
        self._last = ts
        return ts


class FaceMeshDetector:
    """Face landmarks plus the facial transformation matrix used for head angles."""

    def __init__(self, model_path: str = config.FACE_LANDMARKER_MODEL_PATH) -> None:
        options = FaceLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=model_path),
            running_mode=VisionRunningMode.VIDEO,
            num_faces=1,
            min_face_detection_confidence=0.5,
            min_face_presence_confidence=0.5,
            min_tracking_confidence=0.5,
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=True,
        )
        self._landmarker = FaceLandmarker.create_from_options(options)
        self._clock = _VideoClock()
        logger.info("[DETECTORS] FaceLandmarker loaded (%s)", model_path)

    def detect(self, frame: np.ndarray, timestamp_ms: int) -> FaceObservation | None:
        h, w = frame.shape[:2]
        try:
            result = self._landmarker.detect_for_video(
                _to_mp_image(frame), self._clock.next(timestamp_ms)
            )
        except Exception as e:
            raise TransientDetectionFailure(f"face landmarker: {e}") from e

        if not result.face_landmarks or not result.facial_transformation_matrixes:
            return None
        landmarks = np.array(
            [(lm.x, lm.y, lm.z) for lm in result.face_landmarks[0]],
            dtype=np.float64,
        )
        matrix = np.asarray(result.facial_transformation_matrixes[0], dtype=np.float64)
        return FaceObservation(landmarks=landmarks, matrix=matrix, width=w, height=h)

    def close(self) -> None:
        self._landmarker.close()


class PhoneDetector:
    """YOLO object detector; reports every labelled box, filtering happens downstream."""

    def __init__(self, model_path: str = config.YOLO_MODEL_PATH) -> None:
        self._yolo = YOLO(model_path, verbose=False)
        logger.info("[DETECTORS] YOLO loaded (%s)", model_path)

    def detect(self, frame: np.ndarray, timestamp_ms: int) -> list[ObjectDetection]:
        try:
            results = self._yolo(
                frame, conf=config.PHONE_CONFIDENCE, imgsz=config.YOLO_IMAGE_SIZE, verbose=False
            )
        except Exception as e:
            raise TransientDetectionFailure(f"object detector: {e}") from e

        detections: list[ObjectDetection] = []
        for r in results:
            for box in r.boxes:
                cls_id = int(box.cls[0])
                detections.append(ObjectDetection(
                    label=str(r.names.get(cls_id, cls_id)),
                    score=float(box.conf[0]),
                ))
        return detections

    def close(self) -> None:
        self._yolo = None


class HandDetector:
    """Up to two hands; each hand is a (21, 3) array of normalized landmarks."""

    def __init__(self, model_path: str = config.HAND_LANDMARKER_MODEL_PATH) -> None:
        options = HandLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=model_path),
            running_mode=VisionRunningMode.VIDEO,
            num_hands=2,
            min_hand_detection_confidence=0.5,
            min_hand_presence_confidence=0.5,
            min_tracking_confidence=0.5,
        )
        self._landmarker = HandLandmarker.create_from_options(options)
        self._clock = _VideoClock()
        logger.info("[DETECTORS] HandLandmarker loaded (%s)", model_path)

    def detect(self, frame: np.ndarray, timestamp_ms: int) -> list[np.ndarray]:
        try:
            result = self._landmarker.detect_for_video(
                _to_mp_image(frame), self._clock.next(timestamp_ms)
            )
        except Exception as e:
            raise TransientDetectionFailure(f"hand landmarker: {e}") from e

        return [
            np.array([(lm.x, lm.y, lm.z) for lm in hand], dtype=np.float64)
            for hand in (result.hand_landmarks or [])
        ]

    def close(self) -> None:
        self._landmarker.close()


class DetectorSet:
    """The three detectors of one monitoring session."""

    def __init__(self, face, phone, hands) -> None:
        self.face = face
        self.phone = phone
        self.hands = hands

    def close(self) -> None:
        for detector in (self.face, self.phone, self.hands):
            if detector is None:
                continue
            try:
                detector.close()
            except (RuntimeError, ValueError) as e:
                logger.warning("[DETECTORS] Close failed: %s", e)
        self.face = self.phone = self.hands = None


def load_detectors() -> DetectorSet:
    """Load all three detectors or none of them (raises ModelLoadFailure)."""
    loaded = []
    try:
        face = FaceMeshDetector()
        loaded.append(face)
        phone = PhoneDetector()
        loaded.append(phone)
        hands = HandDetector()
        loaded.append(hands)
    except Exception as e:
        for detector in loaded:
            try:
                detector.close()
            except (RuntimeError, ValueError):
                pass
        raise ModelLoadFailure(f"Detector initialization failed: {e}") from e
    return DetectorSet(face, phone, hands)
