"""
Administration API routes.

Attribute grants and identity reveal. Both are gated by the evaluator;
reveal additionally refuses auditors before any check runs.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Response
from pydantic import BaseModel, Field

from caseguard.api.deps import CurrentPrincipal, Services
from caseguard.security.errors import NotFound

router = APIRouter()


class GrantRequest(BaseModel):
    """Request to grant an attribute."""

    subject_id: str = Field(..., min_length=1, max_length=64)
    attribute_name: str = Field(..., min_length=1, max_length=100)
    expires_at: Optional[datetime] = None
    reason: Optional[str] = Field(None, max_length=500)


class GrantResponse(BaseModel):
    id: str
    subject_id: str
    attribute_name: str
    granted_by: str
    granted_at: datetime
    expires_at: Optional[datetime]

    class Config:
        from_attributes = True


class IdentityResponse(BaseModel):
    anon_id: str
    subject_id: str
    case_id: str


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return (value - value.utcoffset()).replace(tzinfo=None)


@router.post("/attributes/grants", response_model=GrantResponse, status_code=201)
async def grant_attribute(
    request: GrantRequest,
    services: Services,
    principal: CurrentPrincipal,
):
    """
    Grant an attribute to a subject. Requires admin.abac.manage.
    """
    grant = await services.grants.grant(
        principal.id,
        request.subject_id,
        request.attribute_name,
        expires_at=_naive_utc(request.expires_at),
        reason=request.reason,
    )
    return GrantResponse.model_validate(grant)


@router.delete("/attributes/grants/{grant_id}", status_code=204)
async def revoke_attribute(
    grant_id: str,
    services: Services,
    principal: CurrentPrincipal,
):
    """
    Revoke a grant. Takes effect on the next permission check.
    """
    await services.grants.revoke(principal.id, grant_id)
    return Response(status_code=204)


@router.get("/identities/{anon_id}", response_model=IdentityResponse)
async def reveal_identity(
    anon_id: str,
    services: Services,
    principal: CurrentPrincipal,
):
    """
    Resolve a pseudonym to its subject.

    Not permitted and unknown both answer 404.
    """
    identity = await services.vault.resolve_identity(anon_id, principal.id)
    if identity is None:
        raise NotFound("identity not resolvable for caller")
    return IdentityResponse(
        anon_id=anon_id, subject_id=identity.subject_id, case_id=identity.case_id
    )
