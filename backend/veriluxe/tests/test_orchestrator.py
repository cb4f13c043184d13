"""
Tests for the analysis pipeline orchestrator.

Covers event ordering, the confidence filter, the detector fallback path,
per-sub-region persistence isolation and run aggregation.
"""
import asyncio
import uuid

import httpx
import pytest

from veriluxe.cv.human_segmenter import HumanSegmenterClient
from veriluxe.pipeline.events import (
    AiAnalysisStepEvent,
    DetectionsFoundEvent,
    ErrorEvent,
    ProcessingDetectionEvent,
    ProgressEvent,
    SummaryCompleteEvent,
)
from veriluxe.pipeline.orchestrator import PipelineJob, PipelineOptions, PipelineOrchestrator
from veriluxe.tests.pipeline_fakes import (
    FakeAnalysisUnit,
    FakeArtifactStore,
    FakeDetector,
    FakeImageSource,
    FakeRecords,
    FakeSegmenter,
    detection,
    make_png,
)


def run_pipeline(orchestrator, job):
    async def collect():
        return [event async for event in orchestrator.run(job)]
    return asyncio.run(collect())


def types_of(events):
    return [e.type for e in events]


@pytest.fixture
def job():
    return PipelineJob(analysis_id=uuid.uuid4(), user_id=uuid.uuid4(), image_path="u/1.png")


def build(
    detector,
    segmenter=None,
    unit=None,
    store=None,
    records=None,
    image_bytes=None,
    threshold=0.62,
):
    return PipelineOrchestrator(
        detector=detector,
        segmenter=segmenter or FakeSegmenter(),
        analysis_unit=unit or FakeAnalysisUnit(),
        image_source=FakeImageSource(image_bytes or make_png()),
        artifact_store=store or FakeArtifactStore(),
        records=records or FakeRecords(),
        options=PipelineOptions(confidence_threshold=threshold),
    )


@pytest.mark.unit
class TestEventOrdering:
    """Event sequence for the happy path."""

    def test_single_bag_detection_sequence(self, job):
        orchestrator = build(FakeDetector([detection("bag", 0.70)]))

        events = run_pipeline(orchestrator, job)

        assert types_of(events) == [
            "start",
            "yolo_analysis",
            "detections_found",
            "processing_detection",
            "ai_analysis_step",
            "ai_analysis_step",
            "progress",
            "summary_progress",
            "summary_complete",
            "complete",
        ]
        assert events[0].analysis_id == job.analysis_id
        assert events[-1].total_details == 1

    def test_bag_detection_skips_segmentation(self, job):
        segmenter = FakeSegmenter()
        box = (40, 30, 140, 90)
        orchestrator = build(FakeDetector([detection("bag", 0.70, box=box)]), segmenter=segmenter)

        events = run_pipeline(orchestrator, job)

        assert segmenter.calls == []
        progress = [e for e in events if isinstance(e, ProgressEvent)]
        assert len(progress) == 1
        coords = progress[0].detail.coordinates
        assert (coords.x, coords.y, coords.width, coords.height) == (40, 30, 100, 60)
        assert progress[0].detail.type == "bag_detection_1"
        assert progress[0].detail.segment_index == "0"

    def test_streamed_chunks_forwarded_verbatim_with_segment_info(self, job):
        unit = FakeAnalysisUnit(chunks=["The logo ", "is crisp."])
        orchestrator = build(FakeDetector([detection("bag", 0.9)]), unit=unit)

        events = run_pipeline(orchestrator, job)

        steps = [e for e in events if isinstance(e, AiAnalysisStepEvent)]
        assert [s.message for s in steps] == ["The logo ", "is crisp."]
        assert steps[0].segment_info["segmentIndex"] == "0"

    def test_regions_processed_in_detector_order(self, job):
        regions = [
            detection("watch", 0.80, box=(0, 0, 50, 50)),
            detection("bag", 0.95, box=(60, 60, 160, 160)),
            detection("shoe", 0.70, box=(10, 100, 60, 190)),
        ]
        orchestrator = build(FakeDetector(regions))

        events = run_pipeline(orchestrator, job)

        processing = [e for e in events if isinstance(e, ProcessingDetectionEvent)]
        assert [p.data.detection_type for p in processing] == ["watch", "bag", "shoe"]
        assert [(p.data.progress, p.data.total) for p in processing] == [(1, 3), (2, 3), (3, 3)]

        # Each region's progress comes before the next region starts
        order = [e.type for e in events if e.type in ("processing_detection", "progress")]
        assert order == ["processing_detection", "progress"] * 3

    def test_summary_pair_immediately_precedes_complete(self, job):
        orchestrator = build(FakeDetector([detection("bag", 0.9), detection("person", 0.9)]))

        events = run_pipeline(orchestrator, job)

        assert types_of(events)[-3:] == ["summary_progress", "summary_complete", "complete"]


@pytest.mark.unit
class TestConfidenceFilter:
    """Detections below the threshold never reach processing."""

    @pytest.mark.parametrize("confidence", [0.0, 0.3, 0.61, 0.6199])
    def test_below_threshold_excluded(self, job, confidence):
        regions = [detection("bag", confidence), detection("watch", 0.9, box=(0, 0, 30, 30))]
        orchestrator = build(FakeDetector(regions))

        events = run_pipeline(orchestrator, job)

        found = next(e for e in events if isinstance(e, DetectionsFoundEvent))
        assert found.data.detection_count == 1
        assert found.data.detection_types == ["watch"]
        processing = [e for e in events if isinstance(e, ProcessingDetectionEvent)]
        assert all(p.data.detection_type != "bag" for p in processing)

    def test_threshold_is_inclusive(self, job):
        orchestrator = build(FakeDetector([detection("bag", 0.62)]))

        events = run_pipeline(orchestrator, job)

        found = next(e for e in events if isinstance(e, DetectionsFoundEvent))
        assert found.data.detection_count == 1

    def test_nan_confidence_excluded(self, job):
        orchestrator = build(FakeDetector([detection("bag", float("nan")), detection("watch", 0.9, box=(0, 0, 30, 30))]))

        events = run_pipeline(orchestrator, job)

        found = next(e for e in events if isinstance(e, DetectionsFoundEvent))
        assert found.data.detection_types == ["watch"]

    def test_invalid_box_excluded(self, job):
        orchestrator = build(FakeDetector([detection("bag", 0.9, box=(100, 10, 50, 60))]))

        events = run_pipeline(orchestrator, job)

        found = next(e for e in events if isinstance(e, DetectionsFoundEvent))
        assert found.data.detection_count == 0

    def test_zero_regions_still_summarizes(self, job):
        records = FakeRecords()
        orchestrator = build(FakeDetector([detection("bag", 0.2)]), records=records)

        events = run_pipeline(orchestrator, job)

        assert types_of(events) == [
            "start",
            "yolo_analysis",
            "detections_found",
            "summary_progress",
            "summary_complete",
            "complete",
        ]
        summary = next(e for e in events if isinstance(e, SummaryCompleteEvent)).summary
        assert summary.confidence == 0.0
        assert summary.overall_result == "likely_fake"
        assert events[-1].total_details == 0
        assert len(records.summaries) == 1


@pytest.mark.unit
class TestDetectorFallback:
    """Detector failure switches to whole-image analysis."""

    def test_yolo_error_then_single_fallback(self, job):
        segmenter = FakeSegmenter()
        orchestrator = build(FakeDetector.failing(), segmenter=segmenter)

        events = run_pipeline(orchestrator, job)
        kinds = types_of(events)

        assert kinds.count("yolo_error") == 1
        assert kinds.count("fallback_analysis") == 1
        assert kinds.index("yolo_error") + 1 == kinds.index("fallback_analysis")
        assert kinds[-1] == "complete"
        assert "detections_found" not in kinds
        assert segmenter.calls == []

    def test_fallback_covers_whole_image(self, job):
        orchestrator = build(FakeDetector.failing(), image_bytes=make_png(width=320, height=240))

        events = run_pipeline(orchestrator, job)

        progress = [e for e in events if isinstance(e, ProgressEvent)]
        assert len(progress) == 1
        detail = progress[0].detail
        assert detail.type == "fallback_segmentation_1"
        assert (detail.coordinates.width, detail.coordinates.height) == (320, 240)

    def test_yolo_error_carries_reason(self, job):
        orchestrator = build(FakeDetector.failing("Service connection failed: refused"))

        events = run_pipeline(orchestrator, job)

        error = next(e for e in events if e.type == "yolo_error")
        assert "refused" in error.error


@pytest.mark.unit
class TestHumanSegmentation:
    """Person regions fan out into coverage-filtered sub-regions."""

    @staticmethod
    def segformer(items):
        def handler(request):
            return httpx.Response(200, json={"segmentation_result": {"detected_items": items}})
        return handler

    def run_with_segformer(self, job, items):
        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(self.segformer(items))) as http:
                orchestrator = build(
                    FakeDetector([detection("person", 0.95, box=(50, 20, 150, 180))]),
                    segmenter=HumanSegmenterClient(http, "http://segformer.test"),
                )
                return [event async for event in orchestrator.run(job)]
        return asyncio.run(go())

    def test_low_coverage_part_dropped(self, job):
        events = self.run_with_segformer(job, [
            {"label_id": 4, "label": "Upper-clothes", "percentage": 40.0},
            {"label_id": 9, "label": "Left-shoe", "percentage": 0.5},
        ])

        progress = [e for e in events if isinstance(e, ProgressEvent)]
        assert len(progress) == 1
        assert progress[0].detail.type == "human_segment_1_part_1"
        assert progress[0].detail.segment_index == "0_0"
        assert (progress[0].step, progress[0].total) == (1, 1)

    def test_all_parts_below_coverage_fall_back_to_whole_crop(self, job):
        events = self.run_with_segformer(job, [
            {"label_id": 9, "label": "Left-shoe", "percentage": 0.5},
        ])

        progress = [e for e in events if isinstance(e, ProgressEvent)]
        assert len(progress) == 1
        coords = progress[0].detail.coordinates
        assert (coords.x, coords.y, coords.width, coords.height) == (50, 20, 100, 160)

    def test_segmenter_failure_still_yields_progress(self, job):
        def handler(request):
            return httpx.Response(500, json={"detail": "model crashed"})

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
                orchestrator = build(
                    FakeDetector([detection("person", 0.95)]),
                    segmenter=HumanSegmenterClient(http, "http://segformer.test"),
                )
                return [event async for event in orchestrator.run(job)]

        events = asyncio.run(go())

        assert len([e for e in events if isinstance(e, ProgressEvent)]) == 1
        assert events[-1].type == "complete"

    def test_multiple_parts_numbered_per_region(self, job):
        events = self.run_with_segformer(job, [
            {"label_id": 4, "label": "Upper-clothes", "percentage": 40.0},
            {"label_id": 6, "label": "Pants", "percentage": 25.0},
        ])

        progress = [e for e in events if isinstance(e, ProgressEvent)]
        assert [p.detail.type for p in progress] == ["human_segment_1_part_1", "human_segment_1_part_2"]
        assert [(p.step, p.total) for p in progress] == [(1, 2), (2, 2)]

    def test_progress_counts_across_regions(self, job):
        items = [
            {"label_id": 4, "label": "Upper-clothes", "percentage": 40.0},
            {"label_id": 6, "label": "Pants", "percentage": 25.0},
        ]

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(self.segformer(items))) as http:
                orchestrator = build(
                    FakeDetector([
                        detection("person", 0.95, box=(50, 20, 150, 180)),
                        detection("bag", 0.9, box=(0, 0, 40, 40)),
                    ]),
                    segmenter=HumanSegmenterClient(http, "http://segformer.test"),
                )
                return [event async for event in orchestrator.run(job)]

        progress = [e for e in asyncio.run(go()) if isinstance(e, ProgressEvent)]

        assert [p.detail.type for p in progress] == [
            "human_segment_1_part_1",
            "human_segment_1_part_2",
            "bag_detection_2",
        ]
        assert [(p.step, p.total) for p in progress] == [(1, 2), (2, 2), (3, 3)]


@pytest.mark.unit
class TestPersistenceIsolation:
    """A failed upload only costs its own sub-region."""

    def test_upload_failure_emits_error_and_continues(self, job):
        store = FakeArtifactStore(fail_on=[1])
        records = FakeRecords()
        regions = [detection("bag", 0.9), detection("watch", 0.9, box=(0, 0, 40, 40))]
        orchestrator = build(FakeDetector(regions), store=store, records=records)

        events = run_pipeline(orchestrator, job)

        errors = [e for e in events if isinstance(e, ErrorEvent)]
        assert len(errors) == 1
        assert errors[0].message == "Failed to save bag_detection_1 image"
        progress = [e for e in events if isinstance(e, ProgressEvent)]
        assert [p.detail.type for p in progress] == ["watch_detection_2"]
        assert len(records.details) == 1
        assert events[-1].type == "complete"
        assert (progress[0].step, progress[0].total) == (2, 2)
        assert events[-1].total_details == 1

    def test_record_failure_emits_error(self, job):
        records = FakeRecords()

        async def broken_insert(**kwargs):
            raise RuntimeError("insert failed")

        records.create_detail = broken_insert
        orchestrator = build(FakeDetector([detection("bag", 0.9)]), records=records)

        events = run_pipeline(orchestrator, job)

        error = next(e for e in events if isinstance(e, ErrorEvent))
        assert error.message == "Failed to save bag_detection_1 analysis"
        assert events[-1].type == "complete"
        assert events[-1].total_details == 0

    def test_summary_write_failure_reported_before_complete(self, job):
        orchestrator = build(FakeDetector([detection("bag", 0.9)]), records=FakeRecords(fail_summary=True))

        events = run_pipeline(orchestrator, job)

        assert types_of(events)[-3:] == ["summary_progress", "error", "complete"]

    def test_detail_ids_match_persisted_records(self, job):
        records = FakeRecords()
        regions = [detection("bag", 0.9), detection("watch", 0.8, box=(0, 0, 40, 40))]
        orchestrator = build(FakeDetector(regions), records=records)

        events = run_pipeline(orchestrator, job)

        for progress in [e for e in events if isinstance(e, ProgressEvent)]:
            stored = records.details[progress.detail.id]
            assert stored["confidence"] == progress.detail.confidence
            assert stored["result"]["segmentInfo"]["coordinates"] == progress.detail.coordinates.model_dump()
            assert stored["user_id"] == job.user_id


@pytest.mark.unit
class TestAggregation:
    """The summary confidence is the mean of the reported details."""

    def test_summary_confidence_is_mean_of_progress(self, job):
        unit = FakeAnalysisUnit(confidences=[0.95, 0.72, 0.40])
        regions = [
            detection("bag", 0.9),
            detection("watch", 0.9, box=(0, 0, 40, 40)),
            detection("shoe", 0.9, box=(5, 5, 60, 60)),
        ]
        records = FakeRecords()
        orchestrator = build(FakeDetector(regions), unit=unit, records=records)

        events = run_pipeline(orchestrator, job)

        confidences = [e.detail.confidence for e in events if isinstance(e, ProgressEvent)]
        summary = next(e for e in events if isinstance(e, SummaryCompleteEvent)).summary
        assert summary.confidence == pytest.approx(sum(confidences) / len(confidences))
        assert summary.overall_result == "likely_fake"
        assert records.summaries[0][1] == summary

    def test_failed_details_excluded_from_mean(self, job):
        unit = FakeAnalysisUnit(confidences=[0.1, 0.9])
        store = FakeArtifactStore(fail_on=[1])
        regions = [detection("bag", 0.9), detection("watch", 0.9, box=(0, 0, 40, 40))]
        orchestrator = build(FakeDetector(regions), unit=unit, store=store)

        events = run_pipeline(orchestrator, job)

        summary = next(e for e in events if isinstance(e, SummaryCompleteEvent)).summary
        assert summary.confidence == pytest.approx(0.9)
        assert summary.overall_result == "authentic"


@pytest.mark.unit
class TestUnexpectedFailure:
    """Anything uncaught ends the run with one error and no aggregate write."""

    def test_image_load_failure(self, job):
        records = FakeRecords()
        orchestrator = build(FakeDetector([detection("bag", 0.9)]), records=records)

        async def broken_load(image_path):
            raise RuntimeError("File download failed: NoSuchKey")

        orchestrator.image_source.load = broken_load

        events = run_pipeline(orchestrator, job)

        assert types_of(events) == ["start", "error"]
        assert events[-1].message == "Analysis failed"
        assert "NoSuchKey" in events[-1].error
        assert records.summaries == []

    def test_undecodable_image(self, job):
        records = FakeRecords()
        orchestrator = build(FakeDetector([detection("bag", 0.9)]), records=records, image_bytes=b"not an image")

        events = run_pipeline(orchestrator, job)

        assert types_of(events) == ["start", "error"]
        assert records.summaries == []

    def test_analysis_unit_crash_mid_run(self, job):
        records = FakeRecords()
        unit = FakeAnalysisUnit()

        async def exploding_steps(image_bytes):
            raise KeyError("boom")
            yield  # pragma: no cover

        unit.analyze_steps = exploding_steps
        orchestrator = build(FakeDetector([detection("bag", 0.9)]), unit=unit, records=records)

        events = run_pipeline(orchestrator, job)

        kinds = types_of(events)
        assert kinds[-1] == "error"
        assert kinds.count("error") == 1
        assert "complete" not in kinds
        assert records.summaries == []


class SlowRecords(FakeRecords):
    """Holds each insert open until released."""

    def __init__(self):
        super().__init__()
        self.insert_started = asyncio.Event()
        self.release = asyncio.Event()
        self.insert_finished = asyncio.Event()

    async def create_detail(self, **kwargs):
        self.insert_started.set()
        await self.release.wait()
        detail_id = await super().create_detail(**kwargs)
        self.insert_finished.set()
        return detail_id


@pytest.mark.unit
class TestClientDisconnect:
    """Cancelling the consumer mid-persist finishes the write but skips the summary."""

    def test_in_flight_insert_completes_without_summary(self, job):
        async def scenario():
            records = SlowRecords()
            store = FakeArtifactStore()
            orchestrator = build(
                FakeDetector([detection("bag", 0.9), detection("watch", 0.9, box=(0, 0, 40, 40))]),
                store=store,
                records=records,
            )

            async def consume():
                async for _ in orchestrator.run(job):
                    pass

            task = asyncio.create_task(consume())
            await records.insert_started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            records.release.set()
            await asyncio.wait_for(records.insert_finished.wait(), timeout=5)
            return records, store

        records, store = asyncio.run(scenario())

        assert len(records.details) == 1
        stored = next(iter(records.details.values()))
        assert stored["result"]["type"] == "bag_detection_1"
        assert store.calls == 1
        assert records.summaries == []
