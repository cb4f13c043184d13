"""
Per-sub-region analysis: brand identification, authenticity scoring and
translation composed into one result.

The unit never raises on a failing sub-call. Each failure degrades the result
(unknown brand, zeroed probability, missing translation), records an
explanatory finding and sets has_error.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from veriluxe.pipeline.results import ServiceResult
from veriluxe.services.authenticity_scorer import AuthenticityScorer, AuthenticityVerdict
from veriluxe.services.brand_identifier import BrandIdentification, BrandIdentifier
from veriluxe.services.translator import Translation, Translator

logger = logging.getLogger(__name__)

# Step names carried by ai_analysis_step events
STEP_BRAND_IDENTIFICATION = "brand_identification"
STEP_BRAND_IDENTIFIED = "brand_identified"
STEP_AUTHENTICITY_ANALYSIS = "authenticity_analysis"
STEP_AUTHENTICITY_STREAM = "authenticity_stream"
STEP_AUTHENTICITY_COMPLETE = "authenticity_complete"
STEP_TRANSLATION = "translation"
STEP_TRANSLATION_COMPLETE = "translation_complete"


@dataclass
class AnalysisStepUpdate:
    """Intermediate progress from the unit, forwarded as ai_analysis_step."""
    step: str
    message: str
    data: Optional[Dict[str, Any]] = None


@dataclass
class SegmentAnalysis:
    """Final per-sub-region result."""
    brand: BrandIdentification
    authenticity: AuthenticityVerdict
    translation: Optional[Translation]
    confidence: float
    findings: List[str] = field(default_factory=list)
    has_error: bool = False
    manipulation_detected: bool = False

    @property
    def findings_text(self) -> str:
        return "; ".join(self.findings) if self.findings else "No findings reported"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "brand": self.brand.to_dict(),
            "authenticity": self.authenticity.to_dict(),
            "translation": self.translation.to_dict() if self.translation else None,
            "confidence": self.confidence,
            "findings": list(self.findings),
            "hasError": self.has_error,
            "manipulationDetected": self.manipulation_detected,
        }


def degraded_verdict() -> AuthenticityVerdict:
    """Zeroed verdict used when scoring fails."""
    return AuthenticityVerdict(
        authenticity_probability=0.0,
        is_authentic=False,
        overall_assessment="",
        findings=[],
        red_flags=[],
    )


class SegmentAnalysisUnit:
    """
    Runs Brand Identifier -> Authenticity Scorer -> Translator for one image.

    Collaborators are injected so tests can substitute fakes.
    """

    def __init__(
        self,
        brand_identifier: BrandIdentifier,
        scorer: AuthenticityScorer,
        translator: Translator,
        target_language: str = "Korean",
    ):
        self.brand_identifier = brand_identifier
        self.scorer = scorer
        self.translator = translator
        self.target_language = target_language

    async def analyze_steps(self, image_bytes: bytes) -> AsyncIterator[Union[AnalysisStepUpdate, SegmentAnalysis]]:
        """
        Analyze one sub-region image step by step.

        Yields:
            AnalysisStepUpdate values (one per streamed scorer chunk among
            them), then exactly one SegmentAnalysis
        """
        findings: List[str] = []
        has_error = False

        # Step 1: brand
        yield AnalysisStepUpdate(STEP_BRAND_IDENTIFICATION, "Identifying brand and product...")
        brand_result = await self.brand_identifier.identify(image_bytes)
        if brand_result.ok:
            brand = brand_result.value
        else:
            brand = BrandIdentification.unknown(reasoning=brand_result.failure.reason)
            findings.append(f"Brand identification unavailable: {brand_result.failure.reason}")
            has_error = True
        yield AnalysisStepUpdate(
            STEP_BRAND_IDENTIFIED,
            f"Identified brand: {brand.brand_name}",
            data=brand.to_dict(),
        )

        # Step 2: authenticity, streamed
        yield AnalysisStepUpdate(
            STEP_AUTHENTICITY_ANALYSIS,
            f"Analyzing authenticity for {brand.brand_name}...",
        )
        verdict_result: Optional[ServiceResult[AuthenticityVerdict]] = None
        async for output in self.scorer.stream_verdict(image_bytes, brand.brand_name):
            if isinstance(output, ServiceResult):
                verdict_result = output
            else:
                yield AnalysisStepUpdate(STEP_AUTHENTICITY_STREAM, output)

        if verdict_result is not None and verdict_result.ok:
            verdict = verdict_result.value
            findings.extend(verdict.findings)
            findings.extend(f"Red flag: {flag}" for flag in verdict.red_flags)
            manipulation_detected = not verdict.is_authentic
        else:
            reason = verdict_result.failure.reason if verdict_result is not None else "no verdict produced"
            verdict = degraded_verdict()
            findings.append(f"Authenticity analysis unavailable: {reason}")
            has_error = True
            manipulation_detected = False
        yield AnalysisStepUpdate(
            STEP_AUTHENTICITY_COMPLETE,
            f"Authenticity probability: {verdict.authenticity_probability * 100:.1f}%",
            data=verdict.to_dict(),
        )

        # Step 3: translation of the overall assessment
        translation: Optional[Translation] = None
        if verdict.overall_assessment:
            yield AnalysisStepUpdate(STEP_TRANSLATION, f"Translating assessment to {self.target_language}...")
            translation_result = await self.translator.translate(verdict.overall_assessment, self.target_language)
            if translation_result.ok:
                translation = translation_result.value
                yield AnalysisStepUpdate(
                    STEP_TRANSLATION_COMPLETE,
                    "Translation complete",
                    data=translation.to_dict(),
                )
            else:
                findings.append(f"Translation unavailable: {translation_result.failure.reason}")
                has_error = True

        confidence = (brand.confidence + verdict.authenticity_probability) / 2
        if has_error:
            logger.warning(f"Segment analysis degraded for brand {brand.brand_name}: {findings[-1]}")

        yield SegmentAnalysis(
            brand=brand,
            authenticity=verdict,
            translation=translation,
            confidence=confidence,
            findings=findings,
            has_error=has_error,
            manipulation_detected=manipulation_detected,
        )

    async def analyze(self, image_bytes: bytes) -> SegmentAnalysis:
        """Run all steps and return only the final result."""
        result = None
        async for update in self.analyze_steps(image_bytes):
            if isinstance(update, SegmentAnalysis):
                result = update
        return result
