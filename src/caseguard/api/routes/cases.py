"""
Case assignment and unlock API routes.

A judge reaches case content in three steps:
1. A secretary assigns the case; the judge is recorded only by pseudonym
2. The assigned judge requests a single-use credential
3. The judge presents the credential (body or per-case cookie) to unlock

Every refusal after authentication is a 404, so an unassigned case looks
exactly like a missing one.
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Body, Request, Response
from pydantic import BaseModel, Field

from caseguard.abac.attributes import Action
from caseguard.api.deps import CurrentPrincipal, Services
from caseguard.security.errors import NotFound
from caseguard.vault.credentials import cookie_name

router = APIRouter()


CASE_RESOURCE = "case"


class AssignmentRequest(BaseModel):
    """Request to assign a case."""

    judge_id: str = Field(..., min_length=1, max_length=64)
    role: str = Field("judge", max_length=20)


class AssignmentResponse(BaseModel):
    case_id: str
    anon_id: str
    role: str


class CredentialRequest(BaseModel):
    classification: Optional[str] = Field(None, max_length=20)


class CredentialResponse(BaseModel):
    """The raw token is shown exactly once."""

    case_id: str
    token: str
    expires_at: datetime


class UnlockRequest(BaseModel):
    token: Optional[str] = Field(None, max_length=256)


class UnlockResponse(BaseModel):
    case_id: str
    unlocked: bool


@router.post("/{case_id}/assignments", response_model=AssignmentResponse, status_code=201)
async def assign_case(
    case_id: str,
    request: AssignmentRequest,
    services: Services,
    principal: CurrentPrincipal,
):
    """
    Assign a judge to a case. Requires case.assign.judge.
    """
    await services.evaluator.enforce_permission(
        principal.id, Action.CASE_ASSIGN.value, CASE_RESOURCE, resource_id=case_id
    )
    anon_id = await services.vault.assign_to_case(request.judge_id, case_id, request.role)
    return AssignmentResponse(case_id=case_id, anon_id=anon_id, role=request.role)


@router.post("/{case_id}/credentials", response_model=CredentialResponse, status_code=201)
async def issue_case_credential(
    case_id: str,
    response: Response,
    services: Services,
    principal: CurrentPrincipal,
    request: Optional[CredentialRequest] = Body(None),
):
    """
    Issue a single-use unlock credential to the case's assigned judge.

    Also sets it as an HttpOnly per-case cookie.
    """
    await services.vault.require_access(principal.id, case_id)

    context = None
    if request is not None and request.classification:
        context = {"classification": request.classification}
    await services.evaluator.enforce_permission(
        principal.id,
        Action.CASE_VIEW_DETAILS.value,
        CASE_RESOURCE,
        resource_id=case_id,
        context_metadata=context,
    )

    ttl = timedelta(minutes=services.settings.credential_ttl_minutes)
    issued = await services.credentials.issue(case_id, principal.id, ttl)

    response.set_cookie(
        key=cookie_name(case_id),
        value=issued.token,
        max_age=int(ttl.total_seconds()),
        httponly=True,
        secure=services.settings.credential_cookie_secure,
        samesite="strict",
    )
    return CredentialResponse(case_id=case_id, token=issued.token, expires_at=issued.expires_at)


@router.post("/{case_id}/unlock", response_model=UnlockResponse)
async def unlock_case(
    case_id: str,
    http_request: Request,
    response: Response,
    services: Services,
    principal: CurrentPrincipal,
    request: Optional[UnlockRequest] = Body(None),
):
    """
    Consume a case credential.

    The token is read from the body, falling back to the case's cookie.
    """
    await services.vault.require_access(principal.id, case_id)

    token = request.token if request is not None and request.token else None
    if token is None:
        token = http_request.cookies.get(cookie_name(case_id))
    if not token:
        raise NotFound("no case credential presented")

    grant = await services.credentials.validate(token, case_id=case_id)
    if grant is None:
        raise NotFound("case credential rejected")

    # Single use: the cookie is worthless now
    response.delete_cookie(cookie_name(case_id))
    return UnlockResponse(case_id=grant.case_id, unlocked=True)
