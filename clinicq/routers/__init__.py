"""API router initializers."""

from fastapi import APIRouter


def get_api_router() -> APIRouter:
    """Construct and return the API router."""

    from clinicq.routers.appointments import router as appointments_router
    from clinicq.routers.clinics import router as clinics_router
    from clinicq.routers.public import router as public_router

    api_router = APIRouter()
    api_router.include_router(clinics_router, prefix="/clinics", tags=["clinics"])
    api_router.include_router(appointments_router, prefix="/appointments", tags=["appointments"])
    api_router.include_router(public_router, tags=["public"])
    return api_router
