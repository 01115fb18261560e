"""
API routes - combined router from all domain modules.
"""

from fastapi import APIRouter

from pickleclub.api.routes.open_play import router as open_play_router

router = APIRouter()
router.include_router(open_play_router)
