"""
Liveness and version routes of the MedPrep API.

Load balancers poll ``/health``. Deployments read ``/version`` to confirm which
build of the quiz backend is serving traffic.
"""

from fastapi import APIRouter

from medprep_ai.server.core import constant

router = APIRouter()

API_SCHEMA = "v1"


@router.get(
    "/health",
    summary="Liveness",
    description="Answer as long as the MedPrep process accepts requests. The database is not queried.",
    response_description="`{status: ok}`.",
)
async def health_check():
    return {"status": "ok"}


@router.get(
    "/version",
    summary="Build Version",
    description="Report the MedPrep backend release and the API schema it serves.",
    response_description="The release and schema identifiers.",
)
async def version():
    """Release of the running backend, with the route schema under ``/api``."""
    return {"version": constant.VERSION, "schema_version": API_SCHEMA}
