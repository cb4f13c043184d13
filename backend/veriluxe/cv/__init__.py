"""
Computer Vision Clients

This package wraps the external vision services used by the analysis pipeline:
- Region detection (YOLO object/pose service)
- Human part segmentation (Segformer service)
- Cropping and image encode/decode helpers
"""

from veriluxe.cv.region_detector import RegionDetectorClient, RegionDetection, DetectionResponse, create_detector
from veriluxe.cv.human_segmenter import HumanSegmenterClient, SubRegion, create_segmenter
from veriluxe.cv.cropper import crop, decode_image, encode_png, box_to_coordinates

__all__ = [
    "RegionDetectorClient",
    "RegionDetection",
    "DetectionResponse",
    "create_detector",
    "HumanSegmenterClient",
    "SubRegion",
    "create_segmenter",
    "crop",
    "decode_image",
    "encode_png",
    "box_to_coordinates",
]
