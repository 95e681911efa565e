"""
Face detection and descriptor extraction using InsightFace.
Supports GPU with CPU fallback.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from config import FACE_MODEL_NAME, USE_GPU

logger = logging.getLogger(__name__)

# Six-point eye contours picked from the 106-point landmark model, ordered
# outer corner, upper-outer, upper-inner, inner corner, lower-inner, lower-outer
LEFT_EYE_106 = (35, 36, 37, 39, 42, 41)
RIGHT_EYE_106 = (89, 90, 91, 93, 96, 95)


@dataclass
class DetectedFace:
    bbox: Tuple[float, float, float, float]  # x, y, w, h
    descriptor: np.ndarray
    det_score: float
    left_eye: Optional[np.ndarray] = None
    right_eye: Optional[np.ndarray] = None

    @property
    def area(self) -> float:
        return self.bbox[2] * self.bbox[3]


def decode_image(image_bytes: bytes) -> Optional[np.ndarray]:
    """Decode encoded image bytes to a BGR array, None when undecodable."""
    nparr = np.frombuffer(image_bytes, np.uint8)
    if nparr.size == 0:
        return None
    return cv2.imdecode(nparr, cv2.IMREAD_COLOR)


def select_providers(use_gpu: bool) -> List[str]:
    if not use_gpu:
        logger.info("Using CPU (GPU disabled)")
        return ['CPUExecutionProvider']

    import onnxruntime as ort
    available_providers = ort.get_available_providers()

    if 'CUDAExecutionProvider' in available_providers:
        logger.info("GPU (CUDA) available, using GPU acceleration")
        return ['CUDAExecutionProvider', 'CPUExecutionProvider']
    if 'CoreMLExecutionProvider' in available_providers:
        logger.info("CoreML available, using Apple GPU acceleration")
        return ['CoreMLExecutionProvider', 'CPUExecutionProvider']
    logger.warning("GPU not available, using CPU")
    return ['CPUExecutionProvider']


class FaceRecognizer:
    """
    Wrapper around InsightFace for face detection and descriptor extraction.
    Uses buffalo_l by default; its 106-point landmark model supplies the eye
    contours needed by the liveness check.
    """

    def __init__(self, model_name: str = FACE_MODEL_NAME, det_size: tuple = (640, 640), use_gpu: bool = USE_GPU):
        """
        Initialize the face recognizer.

        Args:
            model_name: InsightFace model pack name (buffalo_l, buffalo_sc, etc.)
            det_size: Detection size for face detector
            use_gpu: Try to use GPU, fallback to CPU if unavailable
        """
        from insightface.app import FaceAnalysis

        logger.info(f"Loading InsightFace model: {model_name}...")
        self.providers = select_providers(use_gpu)

        self.app = FaceAnalysis(name=model_name, providers=self.providers)
        self.app.prepare(ctx_id=0, det_size=det_size)

        logger.info(f"Model {model_name} loaded with providers: {self.providers}")

    def detect_faces(self, image: np.ndarray, min_face_size: int = 30) -> List[DetectedFace]:
        """
        Detect faces in a BGR image, largest first.

        Faces smaller than ``min_face_size`` on either side are dropped.
        """
        results = []
        for face in self.app.get(image):
            x1, y1, x2, y2 = [float(v) for v in face.bbox]
            w = x2 - x1
            h = y2 - y1
            if w < min_face_size or h < min_face_size:
                continue

            left_eye = right_eye = None
            landmarks = getattr(face, 'landmark_2d_106', None)
            if landmarks is not None:
                left_eye = landmarks[list(LEFT_EYE_106)]
                right_eye = landmarks[list(RIGHT_EYE_106)]

            results.append(DetectedFace(
                bbox=(x1, y1, w, h),
                descriptor=np.asarray(face.embedding, dtype=np.float32),
                det_score=float(face.det_score),
                left_eye=left_eye,
                right_eye=right_eye,
            ))

        results.sort(key=lambda f: f.area, reverse=True)
        return results

    def extract_descriptor(self, image_bytes: bytes) -> Optional[np.ndarray]:
        """Descriptor of the largest face in an encoded image, or None."""
        image = decode_image(image_bytes)
        if image is None:
            logger.warning("Could not decode image")
            return None

        faces = self.detect_faces(image)
        if not faces:
            return None
        return faces[0].descriptor

    def get_provider_info(self) -> dict:
        """Get information about active execution providers."""
        return {
            "providers": self.providers,
            "using_gpu": any(p in ['CUDAExecutionProvider', 'CoreMLExecutionProvider'] for p in self.providers)
        }
