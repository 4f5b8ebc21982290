from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from fastapi import Depends, Request
from fastapi.responses import JSONResponse, Response

from app.config import Settings
from app.errors import ErrorKind, ErrorResponse, ServiceError
from app.services.accounts import AccountService
from app.services.email import EmailSender
from app.services.orchestrator import JobOrchestrator
from app.services.prediction import PredictionClient
from app.services.quota import QuotaLedger, QuotaPolicy
from app.services.sessions import SessionManager, SessionResolution
from app.services.store import SqlStore
from app.services.usage import UsageRecorder

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Components wired from a single ``Settings`` instance."""

    settings: Settings
    sessions: SessionManager
    ledger: QuotaLedger
    orchestrator: JobOrchestrator
    accounts: AccountService
    prediction: PredictionClient
    mailer: EmailSender

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        store: SqlStore | None = None,
        prediction: PredictionClient | None = None,
        mailer: EmailSender | None = None,
    ) -> "Services":
        store = store or SqlStore()
        prediction = prediction or PredictionClient(settings)
        mailer = mailer or EmailSender(settings)
        ledger = QuotaLedger(QuotaPolicy.from_settings(settings), store)
        return cls(
            settings=settings,
            sessions=SessionManager(settings, store),
            ledger=ledger,
            orchestrator=JobOrchestrator(
                settings, ledger, prediction, UsageRecorder(store)
            ),
            accounts=AccountService(settings, store, mailer),
            prediction=prediction,
            mailer=mailer,
        )

    async def aclose(self) -> None:
        await self.prediction.aclose()
        await self.mailer.aclose()


def get_services(request: Request) -> Services:
    return request.app.state.services


async def resolve_session(
    request: Request, services: Services = Depends(get_services)
) -> SessionResolution:
    token = request.cookies.get(services.settings.session_cookie_name)
    return await services.sessions.resolve_session(token)


def set_session_cookie(
    response: Response, settings: Settings, token: str, expires_at: datetime
) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        token,
        expires=expires_at,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(settings.session_cookie_name, path="/")


def error_response(
    exc: ServiceError, *, settings: Settings | None = None, clear_cookie: bool = False
) -> JSONResponse:
    if exc.kind in (ErrorKind.SERVICE_UNCONFIGURED, ErrorKind.INTERNAL_ERROR):
        logger.error("Request failed: %s", exc)
    content = ErrorResponse(code=exc.kind.value, message=exc.message).model_dump()
    if exc.limit is not None:
        content["limit"] = exc.limit
    response = JSONResponse(status_code=exc.status_code, content=content)
    if clear_cookie and settings is not None:
        clear_session_cookie(response, settings)
    return response
