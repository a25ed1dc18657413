"""Link scanner API routers."""

from fastapi import APIRouter

from . import domain_lists, review, scan, stats, tenants

router = APIRouter()
router.include_router(review.router)
router.include_router(domain_lists.router)
router.include_router(stats.router)
router.include_router(tenants.router)
router.include_router(scan.router)

__all__ = ["router"]
