"""
Human Part Segmentation Client

Sends a cropped person to the external Segformer service and turns the
detected clothing/body-part items into SubRegions for brand and authenticity
analysis.

Every accepted person detection yields at least one SubRegion:
- items below the minimum coverage (or background) are dropped
- if nothing survives, the whole crop is returned as one fallback SubRegion
- if the service call fails, the whole crop is returned, tagged segmented=False
"""
import base64
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import cv2
import httpx
import numpy as np

from veriluxe.cv.cropper import box_to_coordinates, encode_png
from veriluxe.pipeline.results import ServiceFailure

logger = logging.getLogger(__name__)

SERVICE_NAME = "human_segmenter"

BACKGROUND_LABEL_ID = 0


@dataclass
class SubRegion:
    """
    Analyzable piece of a detected region.

    coordinates are in source-image pixels. coverage is the percentage of the
    parent crop occupied by this part (None when no segmentation happened).
    """
    image: np.ndarray
    coordinates: Dict[str, int]
    label_id: Optional[int] = None
    label: Optional[str] = None
    coverage: Optional[float] = None
    segmented: bool = True
    fallback_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Segmentation metadata for JSON serialization (image excluded)."""
        return {
            "labelId": self.label_id,
            "label": self.label,
            "coverage": self.coverage,
            "segmented": self.segmented,
            "fallbackReason": self.fallback_reason,
        }


def whole_crop_region(
    crop_image: np.ndarray,
    original_box: Sequence[float],
    segmented: bool,
    fallback_reason: Optional[str] = None,
) -> SubRegion:
    """SubRegion covering the entire crop at the detection's coordinates."""
    return SubRegion(
        image=crop_image,
        coordinates=box_to_coordinates(original_box),
        segmented=segmented,
        fallback_reason=fallback_reason,
    )


class HumanSegmenterClient:
    """
    HTTP client for the Segformer human-parsing service.

    Contract:
        POST {base_url}/api/v1/segment
            multipart: file, include_individual_masks=true, fill_holes=true
        -> {"segmentation_result": {
                "detected_items": [{"label_id", "label", "percentage", "mask_base64"?}],
                "combined_mask": {"mask_base64"}}}
    """

    SEGMENT_PATH = "/api/v1/segment"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        min_coverage_percent: float = 1.0,
    ):
        """
        Initialize human segmenter client.

        Args:
            http_client: Shared async HTTP client (lifecycle owned by the app)
            base_url: Segmentation service root, e.g. http://segformer:8100
            min_coverage_percent: Items covering less of the crop are dropped
        """
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.min_coverage_percent = min_coverage_percent

    async def segment(self, crop_image: np.ndarray, original_box: Sequence[float]) -> List[SubRegion]:
        """
        Segment a person crop into clothing/body-part sub-regions.

        Args:
            crop_image: BGR person crop
            original_box: (x1, y1, x2, y2) of the crop in source-image pixels

        Returns:
            Coverage-filtered SubRegions; never empty
        """
        try:
            response = await self.http_client.post(
                f"{self.base_url}{self.SEGMENT_PATH}",
                files={"file": ("human_image.png", encode_png(crop_image), "image/png")},
                data={"include_individual_masks": "true", "fill_holes": "true"},
            )
            response.raise_for_status()
            payload = response.json()
            items = (payload.get("segmentation_result") or {}).get("detected_items") or []
        except Exception as e:
            failure = ServiceFailure.from_exception(SERVICE_NAME, e)
            logger.warning(f"Segmentation failed, using whole person crop: {failure.reason}")
            return [whole_crop_region(crop_image, original_box, segmented=False, fallback_reason="segmentation_failed")]

        sub_regions: List[SubRegion] = []
        for item in items:
            sub_region = self._build_sub_region(item, crop_image, original_box)
            if sub_region is not None:
                sub_regions.append(sub_region)

        if not sub_regions:
            logger.info("No segments above coverage threshold, using full person area as fallback")
            return [whole_crop_region(crop_image, original_box, segmented=True, fallback_reason="no_segments")]

        logger.info(f"Segmenter produced {len(sub_regions)} clothing segments")
        return sub_regions

    def _build_sub_region(
        self,
        item: Dict[str, Any],
        crop_image: np.ndarray,
        original_box: Sequence[float],
    ) -> Optional[SubRegion]:
        """Apply the label/coverage filter and cut the part out of the crop."""
        if not isinstance(item, dict):
            logger.warning(f"Skipping malformed segmentation item: {item!r}")
            return None
        try:
            label_id = int(item.get("label_id", BACKGROUND_LABEL_ID))
            coverage = float(item.get("percentage", 0.0))
        except (TypeError, ValueError):
            logger.warning(f"Skipping malformed segmentation item: {item!r}")
            return None

        if label_id == BACKGROUND_LABEL_ID or not coverage >= self.min_coverage_percent:
            return None

        image = crop_image
        coordinates = box_to_coordinates(original_box)

        mask = self._decode_mask(item.get("mask_base64"), crop_image.shape[:2])
        if mask is not None:
            ys, xs = np.nonzero(mask)
            if len(xs) > 0:
                bx1, by1, bx2, by2 = int(xs.min()), int(ys.min()), int(xs.max()) + 1, int(ys.max()) + 1
                masked = np.where(mask[..., None] > 0, crop_image, 0).astype(crop_image.dtype)
                image = masked[by1:by2, bx1:bx2]
                coordinates = {
                    "x": coordinates["x"] + bx1,
                    "y": coordinates["y"] + by1,
                    "width": bx2 - bx1,
                    "height": by2 - by1,
                }

        return SubRegion(
            image=image,
            coordinates=coordinates,
            label_id=label_id,
            label=item.get("label"),
            coverage=coverage,
        )

    @staticmethod
    def _decode_mask(mask_base64: Optional[str], shape: tuple) -> Optional[np.ndarray]:
        """Decode a PNG mask; None unless it matches the crop size."""
        if not mask_base64:
            return None
        if "," in mask_base64 and mask_base64.startswith("data:"):
            mask_base64 = mask_base64.split(",", 1)[1]
        try:
            buffer = np.frombuffer(base64.b64decode(mask_base64), dtype=np.uint8)
        except ValueError:
            return None
        mask = cv2.imdecode(buffer, cv2.IMREAD_GRAYSCALE) if buffer.size else None
        if mask is None or mask.shape[:2] != tuple(shape):
            return None
        return mask


def create_segmenter(
    http_client: httpx.AsyncClient,
    base_url: str,
    min_coverage_percent: float = 1.0,
) -> HumanSegmenterClient:
    """
    Factory function to create human segmenter client.

    Args:
        http_client: Shared async HTTP client
        base_url: Segmentation service root
        min_coverage_percent: Coverage filter threshold

    Returns:
        HumanSegmenterClient instance
    """
    return HumanSegmenterClient(
        http_client=http_client,
        base_url=base_url,
        min_coverage_percent=min_coverage_percent,
    )
