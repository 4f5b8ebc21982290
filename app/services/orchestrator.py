"""Drive one image through the prediction service.

A job moves ``unsubmitted -> pending -> succeeded | failed``. Validation,
quota and configuration checks all happen before the first external call,
so a rejected request leaves no side effects. Usage is recorded only after
the processed bytes are in hand, and before they are returned.
"""
from __future__ import annotations

import asyncio
import base64
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Literal

from pydantic import BaseModel, Field

from app.config import Settings
from app.errors import ErrorKind, ServiceError
from app.metrics import (
    job_latency_seconds,
    job_requests_total,
    poll_iterations,
    upstream_error_total,
)
from app.services.prediction import (
    OutputFetchError,
    Prediction,
    PredictionClient,
    PredictionError,
    SUCCEEDED,
)
from app.services.quota import BACKGROUND_REMOVAL, Deny, QuotaLedger
from app.services.sessions import AuthContext
from app.services.usage import UsageRecorder

logger = logging.getLogger(__name__)

MEDIA_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "webp": "image/webp",
}


class JobState(str, Enum):
    UNSUBMITTED = "unsubmitted"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_TRANSITIONS = {
    JobState.UNSUBMITTED: {JobState.PENDING, JobState.FAILED},
    JobState.PENDING: {JobState.PENDING, JobState.SUCCEEDED, JobState.FAILED},
    JobState.SUCCEEDED: set(),
    JobState.FAILED: set(),
}


class IllegalTransition(RuntimeError):
    pass


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    content_type: str
    size: int | None = None

    @property
    def declared_size(self) -> int:
        return self.size if self.size is not None else len(self.data)

    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


class JobParameters(BaseModel):
    format: Literal["png", "jpg", "webp"] = "png"
    invert: bool = False
    threshold: float = Field(0.0, ge=0.0, le=1.0)
    background_type: Literal["rgba", "white", "green", "blur", "map"] = "rgba"

    @property
    def media_type(self) -> str:
        return MEDIA_TYPES[self.format]

    def to_input(self, image: ImagePayload) -> dict[str, Any]:
        return {
            "image": image.data_url(),
            "format": self.format,
            "reverse": self.invert,
            "threshold": self.threshold,
            "background_type": self.background_type,
        }


@dataclass
class Job:
    payload: ImagePayload
    parameters: JobParameters
    state: JobState = JobState.UNSUBMITTED
    prediction_id: str | None = None
    output: bytes | None = None
    error: ServiceError | None = None
    polls: int = field(default=0)

    def _move(self, target: JobState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise IllegalTransition(f"{self.state.value} -> {target.value}")
        self.state = target

    def mark_pending(self, prediction_id: str) -> None:
        self._move(JobState.PENDING)
        self.prediction_id = prediction_id

    def mark_succeeded(self, output: bytes) -> None:
        self._move(JobState.SUCCEEDED)
        self.output = output

    def mark_failed(self, error: ServiceError) -> ServiceError:
        self._move(JobState.FAILED)
        self.error = error
        return error

    @property
    def is_terminal(self) -> bool:
        return self.state in (JobState.SUCCEEDED, JobState.FAILED)


@dataclass(frozen=True)
class JobResult:
    data: bytes
    media_type: str
    filename: str


# Last-resort text patterns, checked in order
_TEXT_PATTERNS: tuple[tuple[re.Pattern[str], ErrorKind], ...] = (
    (
        re.compile(r"unauthori[sz]ed|unauthenticated|invalid (api )?token|authentication", re.I),
        ErrorKind.UPSTREAM_AUTH_FAILED,
    ),
    (re.compile(r"rate.?limit|throttl|too many requests", re.I), ErrorKind.UPSTREAM_RATE_LIMITED),
    (
        re.compile(r"billing|payment required|insufficient credit|spend limit", re.I),
        ErrorKind.UPSTREAM_BILLING_REQUIRED,
    ),
)


def classify_upstream_error(
    status_code: int | None,
    detail: str | None,
    default: ErrorKind = ErrorKind.INTERNAL_ERROR,
) -> ErrorKind:
    """Map an upstream failure to an error kind.

    Structured status codes win; the message text is only consulted when
    the status does not decide. Upstream 5xx means "try later".
    """
    if status_code in (401, 403):
        return ErrorKind.UPSTREAM_AUTH_FAILED
    if status_code == 402:
        return ErrorKind.UPSTREAM_BILLING_REQUIRED
    if status_code == 429:
        return ErrorKind.UPSTREAM_RATE_LIMITED
    for pattern, kind in _TEXT_PATTERNS:
        if detail and pattern.search(detail):
            return kind
    if status_code is not None and 400 <= status_code < 500:
        return ErrorKind.UPSTREAM_MODEL_ERROR
    if status_code is not None and status_code >= 500:
        return ErrorKind.UPSTREAM_RATE_LIMITED
    return default


class JobOrchestrator:
    def __init__(
        self,
        settings: Settings,
        ledger: QuotaLedger,
        client: PredictionClient,
        recorder: UsageRecorder,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ledger = ledger
        self._client = client
        self._recorder = recorder
        self._sleep = sleep
        self._clock = clock
        self._model_version = settings.replicate_model_version
        self._max_bytes = settings.max_upload_bytes
        self._interval = settings.poll_interval_s
        self._timeout = settings.poll_timeout_s

    def validate(self, payload: ImagePayload | None) -> ImagePayload:
        if payload is None or not payload.data:
            raise ServiceError(ErrorKind.INVALID_INPUT, "No image provided")
        if not (payload.content_type or "").startswith("image/"):
            raise ServiceError(ErrorKind.INVALID_INPUT, "Invalid file type")
        if payload.declared_size > self._max_bytes or len(payload.data) > self._max_bytes:
            raise ServiceError(ErrorKind.INVALID_INPUT, "File too large", status_code=413)
        return payload

    async def authorize(self, auth: AuthContext) -> None:
        decision = await self._ledger.check_and_authorize(auth, BACKGROUND_REMOVAL)
        if isinstance(decision, Deny):
            raise ServiceError(
                ErrorKind.FORBIDDEN_TIER,
                f"Monthly limit of {decision.limit} background removals reached. "
                "Upgrade your plan to continue.",
                limit=decision.limit,
            )

    async def run(
        self,
        auth: AuthContext,
        payload: ImagePayload | None,
        parameters: JobParameters | None = None,
    ) -> JobResult:
        payload = self.validate(payload)
        parameters = parameters or JobParameters()
        await self.authorize(auth)
        if not self._client.configured:
            logger.error("Prediction service credential is not configured")
            raise ServiceError(ErrorKind.SERVICE_UNCONFIGURED)

        job_requests_total.inc()
        job = Job(payload=payload, parameters=parameters)
        start = time.perf_counter()
        try:
            await self._execute(job)
        finally:
            job_latency_seconds.observe(time.perf_counter() - start)
            poll_iterations.observe(job.polls)

        try:
            await self._recorder.record(auth.user_id, BACKGROUND_REMOVAL)
        except Exception:
            # bytes are already fetched; an unrecorded job only undercounts
            logger.exception("Failed to record usage for user %s", auth.user_id)

        return JobResult(
            data=job.output or b"",
            media_type=parameters.media_type,
            filename=f"background-removed.{parameters.format}",
        )

    async def _execute(self, job: Job) -> None:
        try:
            prediction = await self._submit(job)
            prediction = await self._poll(job, prediction)
            uri = self._output_uri(job, prediction)
            job.mark_succeeded(await self._fetch(job, uri))
        except ServiceError:
            raise
        except Exception as exc:
            logger.exception("Background removal failed")
            if job.is_terminal:
                raise
            raise self._fail(job, ErrorKind.INTERNAL_ERROR) from exc

    async def _submit(self, job: Job) -> Prediction:
        try:
            prediction = await self._client.submit(
                self._model_version, job.parameters.to_input(job.payload)
            )
        except PredictionError as exc:
            kind = classify_upstream_error(
                exc.status_code, exc.detail, default=ErrorKind.UPSTREAM_RATE_LIMITED
            )
            logger.warning("Prediction submit failed: %s", exc)
            raise self._fail(job, kind) from exc
        job.mark_pending(prediction.id)
        logger.info("Submitted prediction %s", prediction.id)
        return prediction

    async def _poll(self, job: Job, prediction: Prediction) -> Prediction:
        deadline = self._clock() + self._timeout
        while not prediction.is_terminal:
            if self._clock() >= deadline:
                logger.warning(
                    "Prediction %s still %s after %.0fs",
                    job.prediction_id,
                    prediction.status,
                    self._timeout,
                )
                raise self._fail(job, ErrorKind.UPSTREAM_TIMEOUT)
            await self._sleep(self._interval)
            try:
                prediction = await self._client.get_status(job.prediction_id)
            except PredictionError as exc:
                kind = classify_upstream_error(
                    exc.status_code, exc.detail, default=ErrorKind.UPSTREAM_RATE_LIMITED
                )
                logger.warning("Prediction %s poll failed: %s", job.prediction_id, exc)
                raise self._fail(job, kind) from exc
            job.polls += 1

        if prediction.status != SUCCEEDED:
            kind = classify_upstream_error(
                None, prediction.error, default=ErrorKind.UPSTREAM_MODEL_ERROR
            )
            logger.warning(
                "Prediction %s failed: %s", job.prediction_id, prediction.error
            )
            raise self._fail(job, kind)
        return prediction

    def _output_uri(self, job: Job, prediction: Prediction) -> str:
        if not isinstance(prediction.output, str) or not prediction.output:
            logger.warning(
                "Prediction %s returned unexpected output %r",
                job.prediction_id,
                type(prediction.output).__name__,
            )
            raise self._fail(job, ErrorKind.UPSTREAM_FETCH_FAILED)
        return prediction.output

    async def _fetch(self, job: Job, uri: str) -> bytes:
        try:
            return await self._client.fetch_output(uri)
        except OutputFetchError as exc:
            logger.warning("Prediction %s output fetch failed: %s", job.prediction_id, exc)
            raise self._fail(job, ErrorKind.UPSTREAM_FETCH_FAILED) from exc

    def _fail(self, job: Job, kind: ErrorKind) -> ServiceError:
        if kind.is_upstream:
            upstream_error_total.labels(kind=kind.value).inc()
        return job.mark_failed(ServiceError(kind))


__all__ = [
    "JobState",
    "ImagePayload",
    "JobParameters",
    "Job",
    "JobResult",
    "IllegalTransition",
    "classify_upstream_error",
    "JobOrchestrator",
]
