"""
Route dependencies. Collaborators are built once in the app lifespan and
stored on ``app.state.services``.
"""

from fastapi import HTTPException, Request, status

from cohort_dashboard.services.dashboard.container import DashboardServices


def get_services(request: Request) -> DashboardServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dashboard services not initialized",
        )
    return services
