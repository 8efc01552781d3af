"""API v1 router aggregation."""

from fastapi import APIRouter

from fundrec.api.v1.events import router as events_router
from fundrec.api.v1.personalization import router as personalization_router
from fundrec.api.v1.experiments import router as experiments_router

router = APIRouter(prefix="/api/v1")

router.include_router(events_router)
router.include_router(personalization_router)
router.include_router(experiments_router)
