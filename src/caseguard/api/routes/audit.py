"""
Audit reporting API routes.

Read-only, anonymized views for the auditor role:
- user ids replaced by an 8-char hash, resource ids never exposed
- per-principal rate limit with X-RateLimit-* headers
- every read recorded in the meta-audit log
- judge activity reported as daily counts only

Query parameters are clamped, never rejected.
"""

from dataclasses import replace
from datetime import date, datetime
from typing import Any, Optional

from fastapi import APIRouter, Query, Response
from pydantic import BaseModel

from caseguard.api.deps import CurrentPrincipal, Services
from caseguard.audit.ratelimit import rate_limit_headers
from caseguard.audit.reporting import (
    SearchParams,
    sanitize_action_filter,
    sanitize_result_filter,
    sanitize_search_params,
)
from caseguard.models import DecisionResult

router = APIRouter()


class AnonymizedLogResponse(BaseModel):
    """One anonymized decision."""

    user_hash: str
    action: str
    resource_type: str
    result: DecisionResult
    reason: Optional[str]
    timestamp: datetime
    hour_of_day: int
    day_of_week: int

    class Config:
        from_attributes = True


class PaginationResponse(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class LogsResponse(BaseModel):
    data: list[AnonymizedLogResponse]
    pagination: PaginationResponse
    filters: dict[str, Any]
    hash_version: str


class PeriodResponse(BaseModel):
    start_date: date
    end_date: date
    days_included: int


class MetricsSummaryResponse(BaseModel):
    total_actions: int
    access_allowed: int
    access_denied: int
    case_operations: int
    user_operations: int
    document_operations: int
    admin_operations: int
    deny_rate: float


class DailyMetricsResponse(BaseModel):
    date: str
    access_allowed: int
    access_denied: int
    total_actions: int
    case_operations: int
    user_operations: int
    document_operations: int
    admin_operations: int

    class Config:
        from_attributes = True


class MetricsResponse(BaseModel):
    period: PeriodResponse
    summary: MetricsSummaryResponse
    daily: list[DailyMetricsResponse]
    generated_at: datetime


class TokenSummaryResponse(BaseModel):
    total_emitted: int
    total_used: int
    total_expired_unused: int
    total_pending: int
    usage_rate: float
    avg_hours_to_use: Optional[float]


class DailyTokenResponse(BaseModel):
    date: str
    tokens_emitted: int
    tokens_used: int
    tokens_expired_unused: int
    tokens_pending: int
    avg_hours_to_use: Optional[float]

    class Config:
        from_attributes = True


class TokensResponse(BaseModel):
    period: PeriodResponse
    summary: TokenSummaryResponse
    daily: list[DailyTokenResponse]
    generated_at: datetime


def _params(
    page: Optional[str],
    limit: Optional[str],
    start_date: Optional[str],
    end_date: Optional[str],
    action: Optional[str] = None,
    result: Optional[str] = None,
) -> SearchParams:
    params = sanitize_search_params(
        page=page, limit=limit, start_date=start_date, end_date=end_date
    )
    return replace(
        params,
        action=sanitize_action_filter(action),
        result=sanitize_result_filter(result),
    )


@router.get("/logs", response_model=LogsResponse)
async def list_audit_logs(
    response: Response,
    services: Services,
    principal: CurrentPrincipal,
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    action: Optional[str] = Query(None, description="Substring of the action name"),
    result: Optional[str] = Query(None, description="allow or deny"),
):
    """
    Anonymized decision log, newest first.
    """
    params = _params(page, limit, start_date, end_date, action, result)
    report = await services.reporting.list_logs(principal.id, params)
    response.headers.update(rate_limit_headers(report.rate_limit))

    return LogsResponse(
        data=[AnonymizedLogResponse.model_validate(item) for item in report.items],
        pagination=PaginationResponse(
            page=report.page,
            limit=report.limit,
            total=report.total,
            total_pages=report.total_pages,
        ),
        filters=report.filters,
        hash_version=report.hash_version,
    )


@router.get("/metrics", response_model=MetricsResponse)
async def get_audit_metrics(
    response: Response,
    services: Services,
    principal: CurrentPrincipal,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
):
    """
    Aggregate decision counts per day. Defaults to the last 30 days.
    """
    params = _params(None, None, start_date, end_date)
    report = await services.reporting.metrics(principal.id, params)
    response.headers.update(rate_limit_headers(report.rate_limit))

    summary = report.summary
    return MetricsResponse(
        period=PeriodResponse(
            start_date=report.start_date,
            end_date=report.end_date,
            days_included=len(report.daily),
        ),
        summary=MetricsSummaryResponse(
            total_actions=summary.total_actions,
            access_allowed=summary.access_allowed,
            access_denied=summary.access_denied,
            case_operations=summary.case_operations,
            user_operations=summary.user_operations,
            document_operations=summary.document_operations,
            admin_operations=summary.admin_operations,
            deny_rate=summary.deny_rate,
        ),
        daily=[DailyMetricsResponse.model_validate(day) for day in report.daily],
        generated_at=report.generated_at,
    )


@router.get("/tokens", response_model=TokensResponse)
async def get_token_stats(
    response: Response,
    services: Services,
    principal: CurrentPrincipal,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
):
    """
    Case credential issuance and usage per day. Never exposes tokens or holders.
    """
    params = _params(None, None, start_date, end_date)
    report = await services.reporting.token_stats(principal.id, params)
    response.headers.update(rate_limit_headers(report.rate_limit))

    summary = report.summary
    return TokensResponse(
        period=PeriodResponse(
            start_date=report.start_date,
            end_date=report.end_date,
            days_included=len(report.daily),
        ),
        summary=TokenSummaryResponse(
            total_emitted=summary.total_emitted,
            total_used=summary.total_used,
            total_expired_unused=summary.total_expired_unused,
            total_pending=summary.total_pending,
            usage_rate=summary.usage_rate,
            avg_hours_to_use=summary.avg_hours_to_use,
        ),
        daily=[DailyTokenResponse.model_validate(day) for day in report.daily],
        generated_at=report.generated_at,
    )


class JudgeSummaryResponse(BaseModel):
    total_active_judges: int
    total_judge_actions: int
    days_with_activity: int
    avg_daily_judges: float


class DailyJudgeResponse(BaseModel):
    date: str
    active_judges: int
    total_judge_actions: int

    class Config:
        from_attributes = True


class JudgesResponse(BaseModel):
    period: PeriodResponse
    summary: JudgeSummaryResponse
    daily: list[DailyJudgeResponse]
    generated_at: datetime


@router.get("/judges", response_model=JudgesResponse)
async def get_active_judges(
    response: Response,
    services: Services,
    principal: CurrentPrincipal,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
):
    """
    Active judges per day. Counts only, no judge is ever identified.
    """
    params = _params(None, None, start_date, end_date)
    report = await services.reporting.active_judges(principal.id, params)
    response.headers.update(rate_limit_headers(report.rate_limit))

    summary = report.summary
    return JudgesResponse(
        period=PeriodResponse(
            start_date=report.start_date,
            end_date=report.end_date,
            days_included=len(report.daily),
        ),
        summary=JudgeSummaryResponse(
            total_active_judges=summary.total_active_judges,
            total_judge_actions=summary.total_judge_actions,
            days_with_activity=summary.days_with_activity,
            avg_daily_judges=summary.avg_daily_judges,
        ),
        daily=[DailyJudgeResponse.model_validate(day) for day in report.daily],
        generated_at=report.generated_at,
    )
