"""
Run aggregation: mean confidence over persisted details and verdict banding.
"""
from dataclasses import dataclass
from typing import List, Sequence

from veriluxe.pipeline.events import AnalysisSummary

AUTHENTIC_THRESHOLD = 0.85
SUSPICIOUS_THRESHOLD = 0.70

# Per-detail bands used only for the summary text
STRONG_INDICATOR_THRESHOLD = 0.85
CONCERN_THRESHOLD = 0.75

_ASSESSMENTS = {
    "authentic": (
        "High confidence that the item is authentic. All analyzed regions show "
        "consistent patterns typical of genuine products."
    ),
    "suspicious": (
        "Moderate confidence with some areas of concern. The image shows mixed "
        "indicators that warrant further inspection."
    ),
    "likely_fake": (
        "Low confidence - significant concerns detected. Multiple analyzed regions "
        "indicate a likely counterfeit or manipulated item."
    ),
}

NO_DETAILS_ASSESSMENT = (
    "No regions could be analyzed, so authenticity could not be established. "
    "The image is treated as unverified."
)


@dataclass
class ScoredDetail:
    """Minimal view of a persisted detail needed for aggregation."""
    type: str
    confidence: float


def classify_confidence(confidence: float) -> str:
    """
    Band an aggregate confidence into a verdict.

    >= 0.85 authentic, [0.70, 0.85) suspicious, < 0.70 likely_fake.
    """
    if confidence >= AUTHENTIC_THRESHOLD:
        return "authentic"
    if confidence >= SUSPICIOUS_THRESHOLD:
        return "suspicious"
    return "likely_fake"


def mean_confidence(details: Sequence[ScoredDetail]) -> float:
    """Arithmetic mean of detail confidences; 0.0 for an empty run."""
    if not details:
        return 0.0
    return sum(d.confidence for d in details) / len(details)


def summarize(details: Sequence[ScoredDetail]) -> AnalysisSummary:
    """
    Build the run summary from successfully persisted details.

    With zero details the mean is defined as 0.0 and the verdict is
    likely_fake, so the aggregate written to the analysis row is never NaN.
    """
    confidence = mean_confidence(details)
    overall_result = classify_confidence(confidence)

    if not details:
        assessment = NO_DETAILS_ASSESSMENT
        summary = (
            f"Overall Analysis Summary:\n\n{assessment}\n\n"
            f"Average confidence score: {confidence * 100:.1f}%"
        )
        return AnalysisSummary(
            overall_result=overall_result,
            confidence=confidence,
            summary=summary,
            authenticity_assessment=assessment,
        )

    assessment = _ASSESSMENTS[overall_result]
    strong: List[str] = [d.type for d in details if d.confidence >= STRONG_INDICATOR_THRESHOLD]
    concerns: List[str] = [d.type for d in details if d.confidence < CONCERN_THRESHOLD]

    summary = f"Overall Analysis Summary:\n\n{assessment}\n\n"
    if strong:
        summary += f"Strong indicators (high confidence): {', '.join(strong)}\n"
    if concerns:
        summary += f"Areas of concern (low confidence): {', '.join(concerns)}\n"
    summary += f"\nAverage confidence score: {confidence * 100:.1f}%"

    return AnalysisSummary(
        overall_result=overall_result,
        confidence=confidence,
        summary=summary,
        authenticity_assessment=assessment,
    )
