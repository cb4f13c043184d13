"""
Counterfeit/authenticity scoring via a vision LLM.

In streaming mode the model's text is surfaced chunk by chunk so the pipeline
can forward it to the client while the verdict is still being written.
"""
import logging
from dataclasses import dataclass, asdict, field
from typing import Any, AsyncIterator, Dict, List, Union

from veriluxe.pipeline.results import ServiceFailure, ServiceResult
from veriluxe.services.llm_client import LLMClient, extract_json, image_message, parse_flag, unit_interval

logger = logging.getLogger(__name__)

SERVICE_NAME = "authenticity_scorer"

SCORER_PROMPT = """You are an authentication specialist for {brand_name} products.
Inspect the image for signs of counterfeiting: stitching, hardware, logo
placement and typography, materials, date codes and finishing.
Think briefly, then finish with a single JSON object:
{{"authenticity_probability": <0.0-1.0>, "is_authentic": <true|false>,
  "overall_assessment": "<short paragraph>", "findings": ["..."], "red_flags": ["..."]}}"""


def _as_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [str(v) for v in value]
    if value:
        return [str(value)]
    return []


@dataclass
class AuthenticityVerdict:
    authenticity_probability: float
    is_authentic: bool
    overall_assessment: str
    findings: List[str] = field(default_factory=list)
    red_flags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_model_output(cls, parsed: Dict[str, Any]) -> "AuthenticityVerdict":
        probability = unit_interval(parsed.get("authenticity_probability"))
        is_authentic = parse_flag(parsed.get("is_authentic"))
        return cls(
            authenticity_probability=probability,
            is_authentic=is_authentic if is_authentic is not None else probability >= 0.5,
            overall_assessment=str(parsed.get("overall_assessment") or ""),
            findings=_as_list(parsed.get("findings")),
            red_flags=_as_list(parsed.get("red_flags")),
        )


ScorerOutput = Union[str, ServiceResult[AuthenticityVerdict]]


class AuthenticityScorer:
    """Produces an authenticity verdict for a brand/product image."""

    def __init__(self, llm: LLMClient, streaming: bool = True):
        self.llm = llm
        self.streaming = streaming

    async def stream_verdict(self, image_bytes: bytes, brand_name: str) -> AsyncIterator[ScorerOutput]:
        """
        Score an image, yielding text chunks then exactly one ServiceResult.

        Args:
            image_bytes: PNG of the region under inspection
            brand_name: Brand the region was identified as

        Yields:
            str chunks of model text (streaming mode only), followed by the
            final ServiceResult[AuthenticityVerdict]
        """
        messages = [image_message(SCORER_PROMPT.format(brand_name=brand_name), image_bytes)]
        text = ""
        try:
            if self.streaming:
                async for chunk in self.llm.stream(messages):
                    text += chunk
                    yield chunk
            else:
                text = await self.llm.complete(messages)
            verdict = AuthenticityVerdict.from_model_output(extract_json(text))
        except Exception as e:
            failure = ServiceFailure.from_exception(SERVICE_NAME, e)
            logger.warning(f"Authenticity scoring failed: {failure.reason}")
            yield ServiceResult.failed(failure)
            return

        logger.info(
            f"Authenticity verdict for {brand_name}: "
            f"p={verdict.authenticity_probability:.2f}, authentic={verdict.is_authentic}"
        )
        yield ServiceResult.success(verdict)

    async def score(self, image_bytes: bytes, brand_name: str) -> ServiceResult[AuthenticityVerdict]:
        """Buffered form of stream_verdict."""
        result: ServiceResult[AuthenticityVerdict] = ServiceResult.failed(
            ServiceFailure.from_exception(SERVICE_NAME, ValueError("scorer produced no result"))
        )
        async for output in self.stream_verdict(image_bytes, brand_name):
            if isinstance(output, ServiceResult):
                result = output
        return result
