from fastapi import APIRouter

from questboard.api.routes.play import router as play_router
from questboard.api.routes.quests import router as quests_router
from questboard.api.routes.users import router as users_router

router = APIRouter(prefix="/api/v1")

router.include_router(users_router)
router.include_router(quests_router)
router.include_router(play_router)
