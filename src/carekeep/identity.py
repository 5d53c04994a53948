"""
Identity Boundary

The external identity source supplies the authenticated principal.
Absence of a principal means the caller is unauthenticated.
"""

from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field


class Principal(BaseModel):
    """Authenticated user as reported by the identity source."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    role: str = Field(..., min_length=1)


class PrincipalProvider(Protocol):
    def get_current_principal(self) -> Principal | None: ...


class StaticPrincipalProvider:
    """Provider holding one principal; handy for scripts and tests."""

    def __init__(self, principal: Principal | None = None):
        self._principal = principal

    def set(self, principal: Principal | None) -> None:
        self._principal = principal

    def get_current_principal(self) -> Principal | None:
        return self._principal
