"""
Uniform result type for inference-service calls.

Every client in the pipeline returns a ServiceResult instead of raising, so the
orchestrator can pick a fallback path by inspecting ``failure.kind``.
"""
import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

import httpx

T = TypeVar("T")


class FailureKind(str, Enum):
    """Why an external call failed."""
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    INVALID_RESPONSE = "invalid_response"
    UNEXPECTED = "unexpected"


@dataclass
class ServiceFailure:
    """
    Structured description of a failed external call.

    Attributes:
        service: Logical service name (e.g. "region_detector")
        kind: Failure category
        reason: Human-readable reason
        status_code: HTTP status when kind is HTTP_STATUS
    """
    service: str
    kind: FailureKind
    reason: str
    status_code: Optional[int] = None

    @classmethod
    def from_exception(cls, service: str, exc: BaseException) -> "ServiceFailure":
        """Classify an exception raised while talking to ``service``."""
        if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
            return cls(service, FailureKind.TIMEOUT, f"Request timed out: {exc}")

        if isinstance(exc, httpx.HTTPStatusError):
            status_code = exc.response.status_code
            return cls(
                service,
                FailureKind.HTTP_STATUS,
                f"{service} returned HTTP {status_code}",
                status_code=status_code,
            )

        if isinstance(exc, httpx.TransportError):
            return cls(service, FailureKind.CONNECTION, f"Service connection failed: {exc}")

        if isinstance(exc, (ValueError, KeyError, TypeError, AttributeError)):
            return cls(service, FailureKind.INVALID_RESPONSE, f"Malformed response: {exc}")

        return cls(service, FailureKind.UNEXPECTED, f"{type(exc).__name__}: {exc}")

    def to_dict(self) -> dict:
        return {
            "service": self.service,
            "kind": self.kind.value,
            "reason": self.reason,
            "status_code": self.status_code,
        }


@dataclass
class ServiceResult(Generic[T]):
    """Either a value or a ServiceFailure, never both."""
    value: Optional[T] = None
    failure: Optional[ServiceFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "ServiceResult[T]":
        return cls(value=value)

    @classmethod
    def failed(cls, failure: ServiceFailure) -> "ServiceResult[T]":
        return cls(failure=failure)
