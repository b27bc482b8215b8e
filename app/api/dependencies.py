"""
app/api/dependencies.py

Shared FastAPI dependencies: the process runtime and caller identity.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request, status

from app.runtime import PipelineRuntime

ROLES = ("ADMIN", "EDITOR", "VIEWER")


@dataclass(frozen=True)
class CallerIdentity:
    caller_id: str
    role: str

    @property
    def label(self) -> str:
        return f"{self.role}:{self.caller_id}"


def get_runtime(request: Request) -> PipelineRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Pipeline runtime is not initialised.",
        )
    return runtime


def get_caller(
    x_caller_id: str | None = Header(default=None),
    x_caller_role: str | None = Header(default=None),
) -> CallerIdentity:
    """
    Resolve the caller from ``X-Caller-Id`` / ``X-Caller-Role``.
    """

    caller_id = (x_caller_id or "").strip()
    role = (x_caller_role or "").strip().upper()
    if not caller_id or not role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Caller-Id and X-Caller-Role headers are required.",
        )
    if role not in ROLES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown role '{role}'. Allowed: {', '.join(ROLES)}.",
        )
    return CallerIdentity(caller_id=caller_id, role=role)


def require_roles(*roles: str) -> Callable[[CallerIdentity], CallerIdentity]:
    allowed = {role.upper() for role in roles}

    def _check(caller: CallerIdentity = Depends(get_caller)) -> CallerIdentity:
        if caller.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role {caller.role} may not perform this action.",
            )
        return caller

    return _check
