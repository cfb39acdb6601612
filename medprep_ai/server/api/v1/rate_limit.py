"""
Rate Limit Endpoints.

Expose the adaptive quiz generation limits of the caller: whether a quiz can
be generated now and how many were generated recently.
"""

from fastapi import APIRouter

from medprep_ai.server.services.deps import CurrentUserDep, SessionDep
from medprep_ai.server.services.rate_limit import RateLimitService

router = APIRouter()

CAN_GENERATE_MESSAGE = "Vous pouvez générer un nouveau quiz adaptatif"


@router.get(
    "/status",
    summary="Rate Limit Status",
    description="Current daily and cooldown limits of the caller, with usage statistics and a displayable message.",
    response_description="Rate limit status, usage and message.",
)
async def rate_limit_status(user: CurrentUserDep, session: SessionDep):
    """
    Get the caller's rate limit status.

    ``message`` is ready to show: either a confirmation that a quiz can be
    generated, or the reason it cannot and when it will be possible.
    """
    service = RateLimitService(session)
    rate_limit = await service.check_rate_limit(user.id)
    usage = await service.get_user_usage_stats(user.id)
    return {
        "success": True,
        "data": {
            "rateLimit": rate_limit,
            "usage": usage,
            "message": (
                CAN_GENERATE_MESSAGE
                if rate_limit["canGenerate"]
                else RateLimitService.get_rate_limit_error_message(rate_limit)
            ),
        },
    }


@router.get(
    "/usage-stats",
    summary="Usage Statistics",
    description="Adaptive quizzes generated by the caller today, over the last 7 days and over the last 30 days.",
)
async def usage_stats(user: CurrentUserDep, session: SessionDep):
    return {"success": True, "data": await RateLimitService(session).get_user_usage_stats(user.id)}
