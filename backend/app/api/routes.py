from fastapi import APIRouter

from app.api.assistant import router as assistant_router
from app.api.auth import router as auth_router
from app.api.direct import router as direct_router
from app.api.groups import router as groups_router
from app.api.profiles import router as profiles_router

router = APIRouter()

router.include_router(auth_router, prefix="/auth", tags=["auth"])
router.include_router(profiles_router, prefix="/profiles", tags=["profiles"])
router.include_router(groups_router, prefix="/groups", tags=["groups"])
router.include_router(direct_router, prefix="/direct", tags=["direct"])
router.include_router(assistant_router, prefix="/assistant", tags=["assistant"])


@router.get("/", tags=["root"])
def read_root() -> dict[str, str]:
    return {"message": "Welcome to the Guide Light API"}
