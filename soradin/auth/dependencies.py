from secrets import compare_digest

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from soradin.core import config

security = HTTPBearer(auto_error=False)


def require_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> None:
    # An unset secret locks the endpoint rather than opening it.
    if not config.CRON_SECRET:
        raise HTTPException(status_code=401, detail="Cron secret is not configured")
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not compare_digest(credentials.credentials, config.CRON_SECRET):
        raise HTTPException(status_code=401, detail="Unauthorized")
