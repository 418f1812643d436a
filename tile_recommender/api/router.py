from fastapi import APIRouter
from tile_recommender.api.recommendations import router as recommendations_router

router = APIRouter()
router.include_router(recommendations_router)
