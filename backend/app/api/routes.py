"""API route definitions."""

from fastapi import APIRouter

from app.api import sync, tips

router = APIRouter()
router.include_router(sync.router)
router.include_router(tips.router)
