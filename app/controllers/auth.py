from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.dependencies import (
    Services,
    clear_session_cookie,
    error_response,
    get_services,
    set_session_cookie,
)
from app.errors import ErrorResponse, ServiceError
from app.services.accounts import VerificationOutcome

router = APIRouter(prefix="/auth")


class SignupRequest(BaseModel):
    email: str | None = None
    password: str | None = None
    name: str | None = None


class LoginRequest(BaseModel):
    email: str | None = None
    password: str | None = None


class ResendRequest(BaseModel):
    email: str | None = None


class VerificationResponse(BaseModel):
    success: bool = True
    user_id: int | None = None
    email_sent: bool
    email_mode: str
    verification_url: str | None = None
    email_error: str | None = None
    message: str | None = None


def _verification_payload(outcome: VerificationOutcome, message: str | None) -> dict:
    return VerificationResponse(
        user_id=outcome.user_id,
        email_sent=outcome.email_sent,
        email_mode=outcome.email_mode,
        verification_url=outcome.verification_url,
        email_error=outcome.email_error,
        message=message,
    ).model_dump(exclude_none=True)


_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


@router.post("/signup", response_model=VerificationResponse, responses=_ERRORS)
async def signup(body: SignupRequest, services: Services = Depends(get_services)):
    try:
        outcome = await services.accounts.signup(
            body.email or "", body.password or "", body.name or ""
        )
    except ServiceError as exc:
        return error_response(exc)
    message = None
    if not outcome.email_sent:
        message = (
            "Account created successfully, but email sending failed. "
            "Please use the verification link below."
        )
    return _verification_payload(outcome, message)


@router.post("/resend-verification", response_model=VerificationResponse, responses=_ERRORS)
async def resend_verification(
    body: ResendRequest, services: Services = Depends(get_services)
):
    try:
        outcome = await services.accounts.resend_verification(body.email or "")
    except ServiceError as exc:
        return error_response(exc)
    message = (
        "Verification email sent successfully"
        if outcome.email_sent
        else "Email sending failed, but verification link is available"
    )
    return _verification_payload(outcome, message)


@router.get("/verify", responses=_ERRORS)
async def verify(
    token: str | None = Query(None), services: Services = Depends(get_services)
):
    try:
        await services.accounts.verify_email(token)
    except ServiceError as exc:
        return error_response(exc)
    return {"success": True}


@router.post("/login", responses=_ERRORS)
async def login(body: LoginRequest, services: Services = Depends(get_services)):
    try:
        issued = await services.sessions.login(body.email or "", body.password or "")
    except ServiceError as exc:
        return error_response(exc)
    response = JSONResponse({"success": True})
    set_session_cookie(response, services.settings, issued.token, issued.expires_at)
    return response


@router.post("/logout")
async def logout(request: Request, services: Services = Depends(get_services)):
    token = request.cookies.get(services.settings.session_cookie_name)
    await services.sessions.destroy_session(token)
    response = JSONResponse({"success": True})
    clear_session_cookie(response, services.settings)
    return response
