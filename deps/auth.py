# deps/auth.py
import hmac

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from settings import settings

bearer = HTTPBearer(auto_error=False)


def require_api_key(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> None:
    if not creds:
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")

    # must be "Bearer"
    if (creds.scheme or "").lower() != "bearer":
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")

    if not hmac.compare_digest(creds.credentials.encode("utf-8"), settings.API_KEY.encode("utf-8")):
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")
