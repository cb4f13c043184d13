"""
Pipeline progress events and their text/event-stream encoding.

Each event kind is its own pydantic model with a literal ``type`` tag, and
PipelineEvent is the closed discriminated union over all of them. Field names
are snake_case in Python and camelCase on the wire.
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

EVENT_STREAM_MEDIA_TYPE = "text/event-stream"

EVENT_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # disable nginx response buffering
}


class WireModel(BaseModel):
    """Base for all wire payloads: camelCase aliases, accepts either form."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Payload parts
# ============================================================================

class Coordinates(WireModel):
    """Axis-aligned region in source-image pixels."""
    x: int
    y: int
    width: int
    height: int


class DetectionsFoundData(WireModel):
    detection_count: int
    detection_types: List[str]


class ProcessingDetectionData(WireModel):
    detection_type: str
    confidence: float
    progress: int
    total: int


class ProgressDetail(WireModel):
    """One persisted sub-region, as reported to the client."""
    id: UUID
    type: str
    description: str
    confidence: float
    segment_index: str
    coordinates: Coordinates
    manipulation_detected: bool


class AnalysisSummary(WireModel):
    """Run aggregate written onto the analysis row."""
    overall_result: Literal["authentic", "suspicious", "likely_fake"]
    confidence: float
    summary: str
    authenticity_assessment: str


# ============================================================================
# Events
# ============================================================================

class StartEvent(WireModel):
    type: Literal["start"] = "start"
    message: str
    analysis_id: UUID


class YoloAnalysisEvent(WireModel):
    type: Literal["yolo_analysis"] = "yolo_analysis"
    message: str


class DetectionsFoundEvent(WireModel):
    type: Literal["detections_found"] = "detections_found"
    message: str
    data: DetectionsFoundData


class ProcessingDetectionEvent(WireModel):
    type: Literal["processing_detection"] = "processing_detection"
    message: str
    data: ProcessingDetectionData


class AiAnalysisStepEvent(WireModel):
    type: Literal["ai_analysis_step"] = "ai_analysis_step"
    step: str
    message: str
    data: Optional[Dict[str, Any]] = None
    segment_info: Optional[Dict[str, Any]] = None


class YoloErrorEvent(WireModel):
    type: Literal["yolo_error"] = "yolo_error"
    message: str
    error: str


class FallbackAnalysisEvent(WireModel):
    type: Literal["fallback_analysis"] = "fallback_analysis"
    message: str


class ProgressEvent(WireModel):
    type: Literal["progress"] = "progress"
    step: int
    total: int
    detail: ProgressDetail


class SummaryProgressEvent(WireModel):
    type: Literal["summary_progress"] = "summary_progress"
    message: str


class SummaryCompleteEvent(WireModel):
    type: Literal["summary_complete"] = "summary_complete"
    summary: AnalysisSummary
    message: str


class CompleteEvent(WireModel):
    type: Literal["complete"] = "complete"
    message: str
    analysis_id: UUID
    total_details: int


class ErrorEvent(WireModel):
    type: Literal["error"] = "error"
    message: str
    error: str


PipelineEvent = Annotated[
    Union[
        StartEvent,
        YoloAnalysisEvent,
        DetectionsFoundEvent,
        ProcessingDetectionEvent,
        AiAnalysisStepEvent,
        YoloErrorEvent,
        FallbackAnalysisEvent,
        ProgressEvent,
        SummaryProgressEvent,
        SummaryCompleteEvent,
        CompleteEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter = TypeAdapter(PipelineEvent)


# ============================================================================
# Codec
# ============================================================================

def encode_event(event: WireModel) -> str:
    """Render one event as a ``data: <json>`` SSE frame."""
    payload = event.model_dump_json(by_alias=True, exclude_none=True)
    return f"data: {payload}\n\n"


def parse_event(payload: str) -> WireModel:
    """Validate a single JSON payload into its event model."""
    return _event_adapter.validate_json(payload)


def decode_events(text: str) -> List[WireModel]:
    """
    Parse a text/event-stream body back into events.

    Frames are separated by blank lines; multiple ``data:`` lines in one frame
    are joined with newlines. Comment lines (``:``), other SSE fields and the
    ``[DONE]`` sentinel are ignored.
    """
    events: List[WireModel] = []
    data_lines: List[str] = []

    def flush() -> None:
        if not data_lines:
            return
        payload = "\n".join(data_lines)
        data_lines.clear()
        if payload.strip() == "[DONE]":
            return
        events.append(parse_event(payload))

    for line in text.splitlines():
        if not line.strip():
            flush()
            continue
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip(" "))

    flush()
    return events
