"""
Luxury brand identification via a vision LLM.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict

from veriluxe.pipeline.results import ServiceFailure, ServiceResult
from veriluxe.services.llm_client import LLMClient, extract_json, image_message, unit_interval

logger = logging.getLogger(__name__)

SERVICE_NAME = "brand_identifier"

UNKNOWN_BRAND = "Unknown Brand"

BRAND_PROMPT = """You are an expert in luxury goods.
Identify the luxury brand and product shown in this image.
Respond with a single JSON object and nothing else:
{"brand_name": "<brand or empty string>", "product_type": "<bag, watch, shoe, ...>",
 "confidence": <0.0-1.0>, "reasoning": "<one or two sentences>"}"""


@dataclass
class BrandIdentification:
    brand_name: str
    product_type: str
    confidence: float
    reasoning: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def unknown(cls, reasoning: str = "") -> "BrandIdentification":
        return cls(brand_name=UNKNOWN_BRAND, product_type="unknown", confidence=0.0, reasoning=reasoning)


class BrandIdentifier:
    """Asks the LLM which brand/product an image shows."""

    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def identify(self, image_bytes: bytes) -> ServiceResult[BrandIdentification]:
        """
        Identify the brand in an image.

        A response without a brand name is still a success, downgraded to
        "Unknown Brand".
        """
        try:
            content = await self.llm.complete([image_message(BRAND_PROMPT, image_bytes)])
            parsed = extract_json(content)
        except Exception as e:
            failure = ServiceFailure.from_exception(SERVICE_NAME, e)
            logger.warning(f"Brand identification failed: {failure.reason}")
            return ServiceResult.failed(failure)

        brand_name = str(parsed.get("brand_name") or "").strip() or UNKNOWN_BRAND
        identification = BrandIdentification(
            brand_name=brand_name,
            product_type=str(parsed.get("product_type") or "unknown"),
            confidence=unit_interval(parsed.get("confidence")),
            reasoning=str(parsed.get("reasoning") or ""),
        )
        logger.info(f"Identified brand: {identification.brand_name} ({identification.confidence:.2f})")
        return ServiceResult.success(identification)
