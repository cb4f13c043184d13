"""
Text translation via the LLM service.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict

from veriluxe.pipeline.results import ServiceFailure, ServiceResult
from veriluxe.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

SERVICE_NAME = "translator"

TRANSLATOR_SYSTEM_PROMPT = (
    "You are a professional translator. Translate the user's text into {language}. "
    "Reply with the translation only, without quotes or commentary."
)


@dataclass
class Translation:
    text: str
    target_language: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class Translator:
    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def translate(self, text: str, target_language: str) -> ServiceResult[Translation]:
        """Translate a text block; empty input returns an empty translation."""
        if not text.strip():
            return ServiceResult.success(Translation(text="", target_language=target_language))

        messages = [
            {"role": "system", "content": TRANSLATOR_SYSTEM_PROMPT.format(language=target_language)},
            {"role": "user", "content": text},
        ]
        try:
            translated = await self.llm.complete(messages)
        except Exception as e:
            failure = ServiceFailure.from_exception(SERVICE_NAME, e)
            logger.warning(f"Translation failed: {failure.reason}")
            return ServiceResult.failed(failure)

        return ServiceResult.success(Translation(text=translated.strip(), target_language=target_language))
