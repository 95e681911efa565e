import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class CameraType(str, Enum):
    WEBCAM = "webcam"
    RTSP = "rtsp"
    HTTP = "http"
    FILE = "file"


class CameraStream:
    """
    One camera source for a kiosk session.
    Supports webcams, RTSP streams, HTTP/IP cameras, and video files.
    """

    def __init__(self, source: Union[str, int], camera_type: CameraType = CameraType.WEBCAM):
        self.source = source
        self.camera_type = CameraType(camera_type)
        self.capture: Optional[cv2.VideoCapture] = None
        self.connected_at: Optional[datetime] = None
        self.last_frame_time: Optional[datetime] = None
        self.frame_count = 0

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *exc_info):
        self.release()

    @property
    def is_open(self) -> bool:
        return self.capture is not None and self.capture.isOpened()

    def open(self) -> bool:
        """Open the source with low-latency settings."""
        self.release()

        if self.camera_type == CameraType.WEBCAM:
            cap = cv2.VideoCapture(int(self.source))
        elif self.camera_type == CameraType.RTSP:
            cap = cv2.VideoCapture(self.source, cv2.CAP_FFMPEG)
            cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)  # Minimal buffer
        elif self.camera_type == CameraType.HTTP:
            cap = cv2.VideoCapture(self.source)
            cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        else:
            cap = cv2.VideoCapture(self.source)

        if not cap.isOpened():
            logger.error(f"Failed to open camera source: {self.source}")
            cap.release()
            return False

        self.capture = cap
        self.connected_at = datetime.now()
        self.frame_count = 0
        logger.info(
            f"Camera {self.source} opened: "
            f"{int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))}x{int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))}"
        )
        return True

    def read(self) -> Optional[np.ndarray]:
        """
        Latest frame as a BGR array, or None when the source has no frame.
        """
        if not self.is_open:
            return None

        cap = self.capture
        # Network streams buffer; skip stale frames to get the latest one
        if self.camera_type in (CameraType.RTSP, CameraType.HTTP):
            for _ in range(5):
                if not cap.grab():
                    break
            ret, frame = cap.retrieve()
        else:
            ret, frame = cap.read()

        if not ret or frame is None:
            logger.warning(f"Failed to read frame from camera {self.source}")
            return None

        self.last_frame_time = datetime.now()
        self.frame_count += 1
        return frame

    def release(self):
        if self.capture is not None:
            self.capture.release()
            self.capture = None
            logger.info(f"Camera {self.source} released")

    def info(self) -> Dict:
        return {
            "source": str(self.source),
            "type": self.camera_type.value,
            "open": self.is_open,
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
            "last_frame_time": self.last_frame_time.isoformat() if self.last_frame_time else None,
            "frame_count": self.frame_count,
        }
