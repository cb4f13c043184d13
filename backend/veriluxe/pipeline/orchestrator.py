"""
Analysis Pipeline Orchestrator

Drives one analysis run for an uploaded image and yields PipelineEvents as it
goes:

    start -> yolo_analysis -> detections_found
          -> per region:     processing_detection
             -> per sub-region: ai_analysis_step* -> progress | error
          -> summary_progress -> summary_complete | error -> complete

A detector failure replaces detection with yolo_error + fallback_analysis and
analyzes the whole image as a single region. Regions and sub-regions are
processed strictly one at a time, in detector order.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol
from uuid import UUID

import numpy as np

from veriluxe.cv.cropper import crop, decode_image, encode_png, image_box
from veriluxe.cv.human_segmenter import HumanSegmenterClient, SubRegion, whole_crop_region
from veriluxe.cv.region_detector import RegionDetection, RegionDetectorClient
from veriluxe.pipeline.events import (
    AiAnalysisStepEvent,
    AnalysisSummary,
    CompleteEvent,
    Coordinates,
    DetectionsFoundData,
    DetectionsFoundEvent,
    ErrorEvent,
    FallbackAnalysisEvent,
    ProcessingDetectionData,
    ProcessingDetectionEvent,
    ProgressDetail,
    ProgressEvent,
    StartEvent,
    SummaryCompleteEvent,
    SummaryProgressEvent,
    WireModel,
    YoloAnalysisEvent,
    YoloErrorEvent,
)
from veriluxe.pipeline.segment_analysis import SegmentAnalysis, SegmentAnalysisUnit
from veriluxe.pipeline.summary import ScoredDetail, summarize

logger = logging.getLogger(__name__)

FALLBACK_LABEL = "image"
FALLBACK_DETAIL_PREFIX = "fallback_segmentation"


# ============================================================================
# Ports
# ============================================================================

class ImageSource(Protocol):
    async def load(self, image_path: str) -> bytes:
        ...


class ArtifactStore(Protocol):
    async def upload_image(self, analysis_id: UUID, name: str, png_bytes: bytes) -> str:
        """Store a PNG for an analysis and return its public URL."""
        ...


class AnalysisRecords(Protocol):
    async def create_detail(
        self,
        analysis_id: UUID,
        user_id: UUID,
        image_url: str,
        confidence: float,
        result: Dict[str, Any],
    ) -> UUID:
        """Insert one AnalysisDetail row and return its id."""
        ...

    async def save_summary(self, analysis_id: UUID, summary: AnalysisSummary) -> None:
        """Write the run aggregate onto the analysis row in one update."""
        ...


# ============================================================================
# Run inputs
# ============================================================================

@dataclass
class PipelineOptions:
    confidence_threshold: float = 0.62


@dataclass
class PipelineJob:
    """One analysis run request, already authorized."""
    analysis_id: UUID
    user_id: UUID
    image_path: str


@dataclass
class _WorkItem:
    """A sub-region scheduled for analysis, with its naming and provenance."""
    detail_type: str
    segment_index: str
    sub_region: SubRegion
    describe: str
    detection: Optional[RegionDetection] = None
    detection_index: Optional[int] = None
    part_index: Optional[int] = None


@dataclass
class _RunProgress:
    """Run-wide sub-region counters; total grows as regions are expanded."""
    scheduled: int = 0
    processed: int = 0


class PersistenceError(Exception):
    """Upload or row insert for a single sub-region failed."""

    def __init__(self, message: str, cause: BaseException):
        super().__init__(f"{message}: {cause}")
        self.message = message
        self.cause = cause


# ============================================================================
# Orchestrator
# ============================================================================

class PipelineOrchestrator:
    """
    Runs the detection -> segmentation -> analysis -> persistence pipeline.

    All collaborators are constructed by the caller and injected; the
    orchestrator owns no clients or connections of its own.
    """

    def __init__(
        self,
        detector: RegionDetectorClient,
        segmenter: HumanSegmenterClient,
        analysis_unit: SegmentAnalysisUnit,
        image_source: ImageSource,
        artifact_store: ArtifactStore,
        records: AnalysisRecords,
        options: Optional[PipelineOptions] = None,
    ):
        self.detector = detector
        self.segmenter = segmenter
        self.analysis_unit = analysis_unit
        self.image_source = image_source
        self.artifact_store = artifact_store
        self.records = records
        self.options = options or PipelineOptions()

    async def run(self, job: PipelineJob) -> AsyncIterator[WireModel]:
        """
        Execute one run, yielding events in pipeline order.

        The stream always ends with a complete or error event. Any exception
        escaping the stages below ends the run with a single error event and
        leaves the analysis aggregate untouched.
        """
        try:
            async for event in self._run(job):
                yield event
        except Exception as e:
            logger.exception(f"❌ Analysis {job.analysis_id} failed")
            yield ErrorEvent(message="Analysis failed", error=str(e) or type(e).__name__)

    async def _run(self, job: PipelineJob) -> AsyncIterator[WireModel]:
        logger.info(f"Starting analysis run for {job.analysis_id}")
        yield StartEvent(message="Starting AI analysis...", analysis_id=job.analysis_id)

        image_bytes = await self.image_source.load(job.image_path)
        image = decode_image(image_bytes)

        yield YoloAnalysisEvent(message="Detecting objects in image...")
        detection_result = await self.detector.detect(image_bytes)

        persisted: List[ScoredDetail] = []
        progress = _RunProgress()

        if not detection_result.ok:
            failure = detection_result.failure
            logger.warning(f"Detection failed for {job.analysis_id} ({failure.kind.value}), using whole image")
            yield YoloErrorEvent(
                message="Object detection failed, falling back to whole-image analysis",
                error=failure.reason,
            )
            yield FallbackAnalysisEvent(message="Analyzing the entire image as a single region...")

            progress.scheduled = 1
            async for event in self._process_sub_region(job, self._fallback_item(image), progress, persisted):
                yield event
        else:
            regions = self._accept_regions(detection_result.value.regions)
            yield DetectionsFoundEvent(
                message=f"Found {len(regions)} objects to analyze",
                data=DetectionsFoundData(
                    detection_count=len(regions),
                    detection_types=[r.label for r in regions],
                ),
            )

            for i, region in enumerate(regions):
                yield ProcessingDetectionEvent(
                    message=f"Processing {region.label} detection {i + 1} of {len(regions)}",
                    data=ProcessingDetectionData(
                        detection_type=region.label,
                        confidence=region.confidence,
                        progress=i + 1,
                        total=len(regions),
                    ),
                )

                items = await self._expand_region(image, region, i)
                progress.scheduled += len(items)
                for item in items:
                    async for event in self._process_sub_region(job, item, progress, persisted):
                        yield event

        yield SummaryProgressEvent(message="Generating overall analysis summary...")
        summary = summarize(persisted)

        try:
            await asyncio.shield(self.records.save_summary(job.analysis_id, summary))
        except Exception as e:
            logger.error(f"❌ Failed to save summary for {job.analysis_id}: {e}")
            yield ErrorEvent(message="Failed to save analysis summary", error=str(e))
        else:
            yield SummaryCompleteEvent(summary=summary, message="Analysis summary saved successfully")

        logger.info(f"✅ Analysis {job.analysis_id} complete: {len(persisted)} details, {summary.overall_result}")
        yield CompleteEvent(
            message="AI analysis completed successfully",
            analysis_id=job.analysis_id,
            total_details=len(persisted),
        )

    # ------------------------------------------------------------------------
    # Region handling
    # ------------------------------------------------------------------------

    def _accept_regions(self, regions: List[RegionDetection]) -> List[RegionDetection]:
        """Keep regions at or above the threshold with well-ordered boxes, in detector order."""
        accepted = []
        for region in regions:
            if not region.confidence >= self.options.confidence_threshold:
                continue
            if not region.has_valid_box:
                logger.warning(f"Skipping {region.label} detection with invalid box {region.box}")
                continue
            accepted.append(region)
        return accepted

    async def _expand_region(self, image: np.ndarray, region: RegionDetection, index: int) -> List[_WorkItem]:
        """Crop a region and split it into sub-regions (segmenting people only)."""
        crop_image = crop(image, region.box)
        pct = f"{region.confidence * 100:.1f}%"

        if region.is_person:
            sub_regions = await self.segmenter.segment(crop_image, region.box)
            return [
                _WorkItem(
                    detail_type=f"human_segment_{index + 1}_part_{j + 1}",
                    segment_index=f"{index}_{j}",
                    sub_region=sub_region,
                    describe=f"Analysis of human {index + 1} segment part {j + 1} (confidence: {pct})",
                    detection=region,
                    detection_index=index,
                    part_index=j,
                )
                for j, sub_region in enumerate(sub_regions)
            ]

        return [
            _WorkItem(
                detail_type=f"{region.label}_detection_{index + 1}",
                segment_index=str(index),
                sub_region=whole_crop_region(crop_image, region.box, segmented=False),
                describe=f"Analysis of detected {region.label} (confidence: {pct})",
                detection=region,
                detection_index=index,
            )
        ]

    def _fallback_item(self, image: np.ndarray) -> _WorkItem:
        box = image_box(image)
        sub_region = whole_crop_region(image, box, segmented=False, fallback_reason="detection_failed")
        coords = sub_region.coordinates
        return _WorkItem(
            detail_type=f"{FALLBACK_DETAIL_PREFIX}_1",
            segment_index="0",
            sub_region=sub_region,
            describe=f"Analysis of image segment 1 ({coords['x']},{coords['y']})",
            detection=RegionDetection(box=box, label=FALLBACK_LABEL, confidence=1.0),
        )

    # ------------------------------------------------------------------------
    # Sub-region handling
    # ------------------------------------------------------------------------

    async def _process_sub_region(
        self,
        job: PipelineJob,
        item: _WorkItem,
        progress: _RunProgress,
        persisted: List[ScoredDetail],
    ) -> AsyncIterator[WireModel]:
        """Analyze one sub-region, persist it and report progress or a per-item error."""
        progress.processed += 1
        step = progress.processed

        try:
            png_bytes = encode_png(item.sub_region.image)
        except ValueError as e:
            logger.error(f"❌ Could not encode {item.detail_type} image: {e}")
            yield ErrorEvent(message=f"Failed to prepare {item.detail_type} image", error=str(e))
            return

        segment_info = {
            "segmentIndex": item.segment_index,
            "coordinates": item.sub_region.coordinates,
        }

        analysis: Optional[SegmentAnalysis] = None
        async for update in self.analysis_unit.analyze_steps(png_bytes):
            if isinstance(update, SegmentAnalysis):
                analysis = update
            else:
                yield AiAnalysisStepEvent(
                    step=update.step,
                    message=update.message,
                    data=update.data,
                    segment_info=segment_info,
                )
        if analysis is None:
            raise RuntimeError(f"Segment analysis produced no result for {item.detail_type}")

        description = f"{item.describe} - {analysis.findings_text}"
        result = self._build_result(item, analysis, description)

        # Upload and insert finish together even if the client goes away
        try:
            detail_id = await asyncio.shield(
                self._persist(job, item, png_bytes, analysis.confidence, result)
            )
        except PersistenceError as e:
            logger.error(f"❌ {e}")
            yield ErrorEvent(message=e.message, error=str(e.cause))
            return

        persisted.append(ScoredDetail(type=item.detail_type, confidence=analysis.confidence))
        yield ProgressEvent(
            step=step,
            total=progress.scheduled,
            detail=ProgressDetail(
                id=detail_id,
                type=item.detail_type,
                description=description,
                confidence=analysis.confidence,
                segment_index=item.segment_index,
                coordinates=Coordinates(**item.sub_region.coordinates),
                manipulation_detected=analysis.manipulation_detected,
            ),
        )

    async def _persist(
        self,
        job: PipelineJob,
        item: _WorkItem,
        png_bytes: bytes,
        confidence: float,
        result: Dict[str, Any],
    ) -> UUID:
        name = f"segment_{item.segment_index}_{uuid.uuid4().hex}.png"
        try:
            image_url = await self.artifact_store.upload_image(job.analysis_id, name, png_bytes)
        except Exception as e:
            raise PersistenceError(f"Failed to save {item.detail_type} image", e) from e

        try:
            return await self.records.create_detail(
                analysis_id=job.analysis_id,
                user_id=job.user_id,
                image_url=image_url,
                confidence=confidence,
                result=result,
            )
        except Exception as e:
            raise PersistenceError(f"Failed to save {item.detail_type} analysis", e) from e

    @staticmethod
    def _build_result(item: _WorkItem, analysis: SegmentAnalysis, description: str) -> Dict[str, Any]:
        """Structured ai_result blob stored on the detail row."""
        detection = None
        if item.detection is not None:
            detection = item.detection.to_dict()
            if item.detection_index is not None:
                detection["parentDetectionIndex"] = item.detection_index
            if item.part_index is not None:
                detection["segmentPartIndex"] = item.part_index

        return {
            "type": item.detail_type,
            "description": description,
            "confidence": analysis.confidence,
            "brand": analysis.brand.to_dict(),
            "authenticity": analysis.authenticity.to_dict(),
            "translation": analysis.translation.to_dict() if analysis.translation else None,
            "findings": list(analysis.findings),
            "segmentInfo": {
                "segmentIndex": item.segment_index,
                "coordinates": item.sub_region.coordinates,
                "manipulationDetected": analysis.manipulation_detected,
                "hasError": analysis.has_error,
                "detection": detection,
                "segmentation": item.sub_region.to_dict(),
            },
        }
