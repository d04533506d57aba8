from __future__ import annotations

import secrets
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from stockline.core.config import get_settings


security = HTTPBasic(auto_error=False)


@dataclass(frozen=True)
class Actor:
    id: str
    role: str

    @property
    def is_privileged(self) -> bool:
        return self.role.lower() in get_settings().privileged_role_set


def require_basic_auth(credentials: HTTPBasicCredentials | None = Depends(security)) -> str:
    settings = get_settings()
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required", headers={"WWW-Authenticate": "Basic"})

    valid_user = secrets.compare_digest(credentials.username, settings.basic_auth_username)
    valid_pass = secrets.compare_digest(credentials.password, settings.basic_auth_password)
    if not (valid_user and valid_pass):
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})
    return credentials.username


def current_actor(
    username: str = Depends(require_basic_auth),
    x_actor_id: str | None = Header(default=None),
    x_actor_role: str | None = Header(default=None),
) -> Actor:
    # End-user identity is resolved by the gateway in front of us; basic auth only proves the caller is that gateway.
    settings = get_settings()
    actor_id = (x_actor_id or "").strip() or username
    role = (x_actor_role or "").strip().lower() or settings.default_actor_role
    return Actor(id=actor_id, role=role)
