from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.dependencies import Services, clear_session_cookie, get_services, resolve_session
from app.errors import ErrorKind, ErrorResponse
from app.services.sessions import SessionResolution

router = APIRouter()

# wire value for "no limit"
UNLIMITED = -1


class UserInfo(BaseModel):
    id: int
    email: str
    name: str | None = None
    subscription_status: str
    is_verified: bool


class UsageInfo(BaseModel):
    current_month: int
    max_usage: int
    remaining: int
    month: str


class UserStatusResponse(BaseModel):
    is_logged_in: bool
    user: UserInfo
    usage: UsageInfo


@router.get("/user-status", response_model=UserStatusResponse)
async def user_status(
    session: SessionResolution = Depends(resolve_session),
    services: Services = Depends(get_services),
):
    user = session.user
    if user is None:
        response = JSONResponse(
            status_code=401,
            content={
                **ErrorResponse(
                    code=ErrorKind.UNAUTHENTICATED.value, message="Not logged in"
                ).model_dump(),
                "is_logged_in": False,
            },
        )
        if session.clear_cookie:
            clear_session_cookie(response, services.settings)
        return response

    status = await services.ledger.remaining(user.auth)
    return UserStatusResponse(
        is_logged_in=True,
        user=UserInfo(
            id=user.id,
            email=user.email,
            name=user.name,
            subscription_status=user.subscription_tier,
            is_verified=user.is_verified,
        ),
        usage=UsageInfo(
            current_month=status.used,
            max_usage=UNLIMITED if status.max is None else status.max,
            remaining=UNLIMITED if status.remaining is None else status.remaining,
            month=status.month,
        ),
    )
