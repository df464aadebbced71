from fastapi import APIRouter

from ticketing.api.v1.allocations import router as allocations_router
from ticketing.api.v1.checkins import router as checkins_router
from ticketing.api.v1.events import router as events_router
from ticketing.api.v1.me import router as me_router
from ticketing.api.v1.orders import router as orders_router
from ticketing.api.v1.registrations import router as registrations_router
from ticketing.api.v1.resources import router as resources_router

router = APIRouter()
router.include_router(resources_router)
router.include_router(events_router)
router.include_router(allocations_router)
router.include_router(registrations_router)
router.include_router(orders_router)
router.include_router(checkins_router)
router.include_router(me_router)
