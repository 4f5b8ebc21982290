from fastapi import APIRouter

from . import auth, images, users

router = APIRouter(prefix="/v1")
router.include_router(auth.router)
router.include_router(images.router)
router.include_router(users.router)
