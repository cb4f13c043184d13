"""
Region Detection Client

Calls the external YOLO object/pose detection service and normalizes its
response into RegionDetection values. Transport and service failures are
returned as ServiceResult failures so the orchestrator can fall back to
whole-image analysis; no retries happen here.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx

from veriluxe.pipeline.results import ServiceFailure, ServiceResult, FailureKind

logger = logging.getLogger(__name__)

SERVICE_NAME = "region_detector"


@dataclass
class RegionDetection:
    """
    One detected region in source-image pixel coordinates.

    box is (x1, y1, x2, y2), axis-aligned.
    """
    box: Tuple[float, float, float, float]
    label: str
    confidence: float
    class_id: Optional[int] = None
    keypoints: Optional[List[Dict[str, float]]] = None

    # COCO label for people
    PERSON_LABEL = "person"

    @property
    def is_person(self) -> bool:
        return self.label == self.PERSON_LABEL

    @property
    def has_valid_box(self) -> bool:
        x1, y1, x2, y2 = self.box
        return x2 > x1 and y2 > y1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "label": self.label,
            "confidence": self.confidence,
            "box": list(self.box),
            "classId": self.class_id,
            "pose": {"keypoints": self.keypoints} if self.keypoints is not None else None,
        }


@dataclass
class DetectionResponse:
    """Normalized detector output."""
    regions: List[RegionDetection] = field(default_factory=list)
    processing_time_ms: float = 0.0


class RegionDetectorClient:
    """
    HTTP client for the detection service.

    Contract:
        POST {base_url}/api/v1/detect  (multipart field "file")
        -> {"success": true,
            "detections": [{"confidence", "box": [x1, y1, x2, y2], "type",
                            "class_id", "pose": {"keypoints": {"xy": [[x, y], ...]}}}],
            "count", "processing_time_ms"}
    """

    DETECT_PATH = "/api/v1/detect"

    def __init__(self, http_client: httpx.AsyncClient, base_url: str):
        """
        Initialize region detector client

        Args:
            http_client: Shared async HTTP client (lifecycle owned by the app)
            base_url: Detection service root, e.g. http://yolo:8000
        """
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")

    async def detect(self, image_bytes: bytes) -> ServiceResult[DetectionResponse]:
        """
        Detect regions in a single image.

        Args:
            image_bytes: Encoded image (PNG/JPEG)

        Returns:
            ServiceResult wrapping DetectionResponse; a failure on transport
            errors, non-2xx status, success=false or a malformed payload
        """
        try:
            response = await self.http_client.post(
                f"{self.base_url}{self.DETECT_PATH}",
                files={"file": ("image.png", image_bytes, "image/png")},
            )
            response.raise_for_status()
            payload = response.json()
            if not isinstance(payload, dict):
                raise ValueError("detection response is not a JSON object")
        except Exception as e:
            failure = ServiceFailure.from_exception(SERVICE_NAME, e)
            logger.warning(f"Region detection failed: {failure.reason}")
            return ServiceResult.failed(failure)

        if not payload.get("success", False):
            reason = payload.get("message") or "Detection service reported failure"
            logger.warning(f"Region detection failed: {reason}")
            return ServiceResult.failed(
                ServiceFailure(SERVICE_NAME, FailureKind.INVALID_RESPONSE, reason)
            )

        try:
            regions = [self._parse_detection(d) for d in payload.get("detections") or []]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            failure = ServiceFailure.from_exception(SERVICE_NAME, e)
            logger.warning(f"Region detection returned malformed detections: {e}")
            return ServiceResult.failed(failure)

        logger.info(f"Region detector returned {len(regions)} detections")
        return ServiceResult.success(
            DetectionResponse(
                regions=regions,
                processing_time_ms=float(payload.get("processing_time_ms") or 0.0),
            )
        )

    @staticmethod
    def _parse_detection(raw: Dict[str, Any]) -> RegionDetection:
        x1, y1, x2, y2 = (float(v) for v in raw["box"])

        confidence = float(raw["confidence"])
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence out of range: {confidence}")

        keypoints = None
        pose = raw.get("pose")
        if pose:
            if not isinstance(pose, dict) or not isinstance(pose.get("keypoints") or {}, dict):
                raise ValueError("pose keypoints must be an object with an xy list")
            if pose.get("keypoints"):
                keypoints = [
                    {"x": float(point[0]), "y": float(point[1])}
                    for point in pose["keypoints"].get("xy") or []
                ]

        class_id = raw.get("class_id")
        return RegionDetection(
            box=(x1, y1, x2, y2),
            label=str(raw["type"]),
            confidence=confidence,
            class_id=int(class_id) if class_id is not None else None,
            keypoints=keypoints,
        )


def create_detector(http_client: httpx.AsyncClient, base_url: str) -> RegionDetectorClient:
    """Factory function to create RegionDetectorClient instance."""
    return RegionDetectorClient(http_client=http_client, base_url=base_url)
