from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import Response
from pydantic import ValidationError

from app.dependencies import Services, error_response, get_services, resolve_session
from app.errors import ErrorKind, ErrorResponse, ServiceError
from app.services.orchestrator import ImagePayload, JobParameters
from app.services.sessions import SessionResolution

OPTIONAL_FILE = File(None)

router = APIRouter()


@router.post(
    "/remove-background",
    response_class=Response,
    responses={
        200: {"content": {"image/png": {}, "image/jpeg": {}, "image/webp": {}}},
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def remove_background(
    session: SessionResolution = Depends(resolve_session),
    services: Services = Depends(get_services),
    image: UploadFile | None = OPTIONAL_FILE,
    format: str | None = Form(None),
    invert: str | None = Form(None),
    threshold: str | None = Form(None),
    background_type: str | None = Form(None),
):
    settings = services.settings
    if session.user is None:
        return error_response(
            ServiceError(ErrorKind.UNAUTHENTICATED),
            settings=settings,
            clear_cookie=session.clear_cookie,
        )

    try:
        # raw form strings; JobParameters coerces and validates them
        fields = {
            "format": format,
            "invert": invert,
            "threshold": threshold,
            "background_type": background_type,
        }
        parameters = JobParameters(
            **{name: value for name, value in fields.items() if value is not None}
        )
    except ValidationError as err:
        message = "; ".join(e.get("msg", "") for e in err.errors())
        return error_response(ServiceError(ErrorKind.INVALID_INPUT, message))

    payload = None
    if image is not None:
        # read one byte past the limit so oversized uploads are detectable
        contents = await image.read(settings.max_upload_bytes + 1)
        size = image.size if image.size is not None else len(contents)
        payload = ImagePayload(
            data=contents, content_type=image.content_type or "", size=size
        )

    try:
        result = await services.orchestrator.run(session.user.auth, payload, parameters)
    except ServiceError as exc:
        return error_response(exc)

    return Response(
        content=result.data,
        media_type=result.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{result.filename}"',
            "Cache-Control": "no-cache",
        },
    )
