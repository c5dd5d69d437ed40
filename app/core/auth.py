from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from .settings import config_settings

# Tokens are provisioned out of band; the tokenUrl only documents the scheme.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def require_auth_token(token: Annotated[str, Depends(oauth2_scheme)]) -> str:
    """
    Requires a bearer token listed in the TOKENS setting.

    A missing Authorization header is rejected by OAuth2PasswordBearer
    before this runs.
    """
    if token not in config_settings.TOKENS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token
