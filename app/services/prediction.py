"""Client for the external prediction service (Replicate HTTP API)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.config import Settings

logger = logging.getLogger(__name__)

PENDING = "pending"
PROCESSING = "processing"
SUCCEEDED = "succeeded"
FAILED = "failed"

TERMINAL_STATUSES = frozenset({SUCCEEDED, FAILED})

# Upstream vocabulary -> ours
_STATUS_MAP = {
    "starting": PENDING,
    "pending": PENDING,
    "processing": PROCESSING,
    "succeeded": SUCCEEDED,
    "failed": FAILED,
    "canceled": FAILED,
}


class PredictionError(Exception):
    """Submit or status call failed; ``status_code`` is None for transport errors."""

    def __init__(self, status_code: int | None, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"[{status_code}] {detail}" if status_code else detail)


class OutputFetchError(Exception):
    pass


@dataclass(frozen=True)
class Prediction:
    id: str
    status: str
    output: Any = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Prediction":
        raw = str(payload.get("status") or "")
        status = _STATUS_MAP.get(raw)
        if status is None:
            logger.warning("Unknown prediction status %r, treating as pending", raw)
            status = PENDING
        error = payload.get("error")
        return cls(
            id=str(payload.get("id") or ""),
            status=status,
            output=payload.get("output"),
            error=str(error) if error else None,
        )


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("title") or body)
    return str(body)


class PredictionClient:
    """Thin async wrapper over the predictions endpoints."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = settings.replicate_api_url.rstrip("/")
        self._token = settings.replicate_api_token
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout_s
        )

    @property
    def configured(self) -> bool:
        return bool(self._token)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> Prediction:
        try:
            response = await self._http.request(
                method, f"{self._base_url}{path}", headers=self._headers(), **kwargs
            )
        except httpx.HTTPError as exc:
            raise PredictionError(None, str(exc) or exc.__class__.__name__) from exc
        if response.status_code >= 400:
            raise PredictionError(response.status_code, _error_detail(response))
        try:
            payload = response.json()
        except ValueError as exc:
            raise PredictionError(response.status_code, "Malformed prediction response") from exc
        return Prediction.from_payload(payload)

    async def submit(self, version: str, input: dict[str, Any]) -> Prediction:
        return await self._request(
            "POST", "/predictions", json={"version": version, "input": input}
        )

    async def get_status(self, prediction_id: str) -> Prediction:
        return await self._request("GET", f"/predictions/{prediction_id}")

    async def fetch_output(self, uri: str) -> bytes:
        try:
            response = await self._http.get(uri, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise OutputFetchError(str(exc) or exc.__class__.__name__) from exc
        if not response.is_success:
            raise OutputFetchError(f"Output fetch returned {response.status_code}")
        return response.content

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


__all__ = [
    "PENDING",
    "PROCESSING",
    "SUCCEEDED",
    "FAILED",
    "Prediction",
    "PredictionError",
    "OutputFetchError",
    "PredictionClient",
]
