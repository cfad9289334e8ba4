"""
cron.py
-------
Purpose:
    Shared-secret bearer verification for scheduled-job triggers.

Notes:
    - Compares against ``Authorization: Bearer <CRON_SECRET>`` in constant time.
    - Missing secret configuration rejects every request.
    - Failure is a terminal 401; the route body never runs.
"""

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from cohort_dashboard.config import settings

_security = HTTPBearer(auto_error=False)


def verify_cron_token(token: str | None, secret: str | None) -> bool:
    if not token or not secret:
        return False
    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))


def cron_auth_dependency(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> None:
    token = credentials.credentials if credentials else None
    if not verify_cron_token(token, settings.CRON_SECRET):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
