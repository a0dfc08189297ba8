from fastapi import APIRouter
from counselbook.modules.bookings.router import router as bookings_router
from counselbook.modules.cases.router import router as cases_router
from counselbook.modules.history.router import router as history_router
from counselbook.modules.slots.router import router as slots_router

api_router = APIRouter()
api_router.include_router(bookings_router, tags=["bookings"])
api_router.include_router(cases_router, tags=["cases"])
api_router.include_router(slots_router, tags=["slots"])
api_router.include_router(history_router, tags=["history"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
