"""
Read-side audit reporting for the auditor role.

Every use case runs the same pipeline:
1. Permission check through the evaluator (records its own Decision)
2. Per-principal rate limit
3. Meta-audit entry for the view being read
4. Query, returning anonymized rows or aggregate counts only

Query parameters are clamped to safe values rather than rejected.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Optional

from caseguard.abac.attributes import Action
from caseguard.abac.evaluator import ABACEvaluator
from caseguard.audit.anonymizer import HASH_VERSION, to_anonymized
from caseguard.audit.ratelimit import RateLimiter, RateLimitStatus
from caseguard.audit.recorder import AuditRecorder
from caseguard.config import Settings
from caseguard.models import (
    AnonymizedDecision,
    DailyDecisionMetrics,
    DailyJudgeActivity,
    DecisionFilters,
    DecisionResult,
    EphemeralCredential,
    utcnow,
)
from caseguard.security.errors import RateLimited, StoreUnavailable
from caseguard.stores.base import AuditSink, CredentialStore

logger = logging.getLogger(__name__)


MAX_PAGE = 1000
MAX_LIMIT = 100
DEFAULT_LIMIT = 20
MAX_ACTION_FILTER_LENGTH = 50

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_UNSAFE_ACTION = re.compile(r"[^a-zA-Z0-9._-]")

AUDIT_RESOURCE = "audit"


@dataclass(frozen=True)
class SearchParams:
    """Sanitized paging, date and filter parameters."""

    page: int = 1
    limit: int = DEFAULT_LIMIT
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    action: Optional[str] = None
    result: Optional[DecisionResult] = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _clamp_int(raw: Any, default: int, low: int, high: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    if value == 0:
        # Zero is treated as absent, like an empty string
        value = default
    return max(low, min(high, value))


def _parse_date(raw: Optional[str]) -> Optional[date]:
    if not raw or not _DATE_PATTERN.match(raw):
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        return None


def sanitize_search_params(
    page: Any = None,
    limit: Any = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> SearchParams:
    """
    Clamp raw query parameters to safe values.

    Args:
        page: Page number, clamped to [1, 1000]
        limit: Page size, clamped to [1, 100], default 20
        start_date: YYYY-MM-DD, anything else becomes None
        end_date: YYYY-MM-DD, anything else becomes None

    Returns:
        SearchParams
    """
    return SearchParams(
        page=_clamp_int(page, 1, 1, MAX_PAGE),
        limit=_clamp_int(limit, DEFAULT_LIMIT, 1, MAX_LIMIT),
        start_date=_parse_date(start_date),
        end_date=_parse_date(end_date),
    )


def sanitize_action_filter(raw: Optional[str]) -> Optional[str]:
    """Keep action-name characters only; empty becomes None."""
    if not raw:
        return None
    cleaned = _UNSAFE_ACTION.sub("", raw)[:MAX_ACTION_FILTER_LENGTH]
    return cleaned or None


def sanitize_result_filter(raw: Optional[str]) -> Optional[DecisionResult]:
    """Only 'allow' and 'deny' are meaningful."""
    try:
        return DecisionResult(raw) if raw else None
    except ValueError:
        return None


@dataclass
class LogPage:
    """One page of anonymized decisions."""

    items: list[AnonymizedDecision]
    page: int
    limit: int
    total: int
    filters: dict[str, Any]
    rate_limit: RateLimitStatus
    hash_version: str = HASH_VERSION

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class MetricsSummary:
    total_actions: int = 0
    access_allowed: int = 0
    access_denied: int = 0
    case_operations: int = 0
    user_operations: int = 0
    document_operations: int = 0
    admin_operations: int = 0

    @property
    def deny_rate(self) -> float:
        """Percentage of denied actions, two decimals."""
        if not self.total_actions:
            return 0.0
        return round(self.access_denied / self.total_actions * 100, 2)


@dataclass
class MetricsReport:
    start_date: date
    end_date: date
    daily: list[DailyDecisionMetrics]
    summary: MetricsSummary
    rate_limit: RateLimitStatus
    generated_at: datetime = field(default_factory=utcnow)


@dataclass
class DailyTokenStats:
    date: str
    tokens_emitted: int = 0
    tokens_used: int = 0
    tokens_expired_unused: int = 0
    tokens_pending: int = 0
    avg_hours_to_use: Optional[float] = None


@dataclass
class TokenSummary:
    total_emitted: int = 0
    total_used: int = 0
    total_expired_unused: int = 0
    total_pending: int = 0
    avg_hours_to_use: Optional[float] = None

    @property
    def usage_rate(self) -> float:
        if not self.total_emitted:
            return 0.0
        return round(self.total_used / self.total_emitted * 100, 2)


@dataclass
class TokenReport:
    start_date: date
    end_date: date
    daily: list[DailyTokenStats]
    summary: TokenSummary
    rate_limit: RateLimitStatus
    generated_at: datetime = field(default_factory=utcnow)


@dataclass
class JudgeSummary:
    total_active_judges: int = 0
    total_judge_actions: int = 0
    days_with_activity: int = 0

    @property
    def avg_daily_judges(self) -> float:
        """Mean active judges over days that had any, one decimal."""
        if not self.days_with_activity:
            return 0.0
        return round(self.total_active_judges / self.days_with_activity, 1)


@dataclass
class JudgeActivityReport:
    start_date: date
    end_date: date
    daily: list[DailyJudgeActivity]
    summary: JudgeSummary
    rate_limit: RateLimitStatus
    generated_at: datetime = field(default_factory=utcnow)


def summarize_judges(daily: list[DailyJudgeActivity]) -> JudgeSummary:
    summary = JudgeSummary()
    for day in daily:
        summary.total_active_judges += day.active_judges
        summary.total_judge_actions += day.total_judge_actions
        if day.active_judges > 0:
            summary.days_with_activity += 1
    return summary


def summarize_metrics(daily: list[DailyDecisionMetrics]) -> MetricsSummary:
    summary = MetricsSummary()
    for day in daily:
        summary.total_actions += day.total_actions
        summary.access_allowed += day.access_allowed
        summary.access_denied += day.access_denied
        summary.case_operations += day.case_operations
        summary.user_operations += day.user_operations
        summary.document_operations += day.document_operations
        summary.admin_operations += day.admin_operations
    return summary


def token_stats_by_day(
    credentials: list[EphemeralCredential], now: datetime
) -> list[DailyTokenStats]:
    """
    Group credentials by issue date.

    A credential is used, expired unused, or pending. Average time to use is
    over used credentials only, in hours rounded to two decimals.
    """
    by_day: dict[str, DailyTokenStats] = {}
    hours: dict[str, list[float]] = {}

    for credential in credentials:
        day = credential.issued_at.date().isoformat()
        stats = by_day.setdefault(day, DailyTokenStats(date=day))
        stats.tokens_emitted += 1
        if credential.used_at is not None:
            stats.tokens_used += 1
            elapsed = (credential.used_at - credential.issued_at).total_seconds() / 3600
            hours.setdefault(day, []).append(elapsed)
        elif credential.expires_at <= now:
            stats.tokens_expired_unused += 1
        else:
            stats.tokens_pending += 1

    for day, values in hours.items():
        by_day[day].avg_hours_to_use = round(sum(values) / len(values), 2)

    return [by_day[day] for day in sorted(by_day, reverse=True)]


def summarize_tokens(daily: list[DailyTokenStats]) -> TokenSummary:
    summary = TokenSummary()
    for day in daily:
        summary.total_emitted += day.tokens_emitted
        summary.total_used += day.tokens_used
        summary.total_expired_unused += day.tokens_expired_unused
        summary.total_pending += day.tokens_pending

    # Mean of the daily means, over days that had any use
    averages = [d.avg_hours_to_use for d in daily if d.avg_hours_to_use is not None]
    if averages:
        summary.avg_hours_to_use = round(sum(averages) / len(averages), 2)
    return summary


class AuditReportingService:
    """
    Auditor-facing reports over the decision log and credential table.

    Example:
        report = await reporting.metrics(principal.id, params)
    """

    LOGS_VIEW = "audit_logs_sanitized"
    METRICS_VIEW = "audit_daily_metrics"
    TOKENS_VIEW = "audit_token_stats"
    JUDGES_VIEW = "audit_active_judges_daily"

    def __init__(
        self,
        sink: AuditSink,
        credential_store: CredentialStore,
        evaluator: ABACEvaluator,
        rate_limiter: RateLimiter,
        recorder: AuditRecorder,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._sink = sink
        self._credentials = credential_store
        self._evaluator = evaluator
        self._limiter = rate_limiter
        self._recorder = recorder
        self._settings = settings
        self._clock = clock

    async def list_logs(self, principal_id: str, params: SearchParams) -> LogPage:
        """
        Page through anonymized decisions, newest first.

        Raises:
            Forbidden: Caller lacks audit.logs.view
            RateLimited: Caller is over quota
            StoreUnavailable: The decision log could not be read
        """
        status = await self._authorize(principal_id, Action.AUDIT_VIEW_LOGS)

        applied = {
            "page": params.page,
            "limit": params.limit,
            "action": params.action,
            "result": params.result.value if params.result else None,
            "startDate": params.start_date.isoformat() if params.start_date else None,
            "endDate": params.end_date.isoformat() if params.end_date else None,
        }
        await self._recorder.record_access(principal_id, self.LOGS_VIEW, applied)

        filters = DecisionFilters(
            action=params.action,
            result=params.result,
            start=_day_start(params.start_date) if params.start_date else None,
            end=_day_end(params.end_date) if params.end_date else None,
        )
        try:
            rows, total = await self._sink.list_decisions(filters, params.offset, params.limit)
        except Exception as e:
            logger.error(f"Audit log query failed: {e}")
            raise StoreUnavailable("decision log query failed") from e

        max_length = self._settings.audit_reason_max_length
        return LogPage(
            items=[to_anonymized(d, max_length) for d in rows],
            page=params.page,
            limit=params.limit,
            total=total,
            filters={k: v for k, v in applied.items() if k not in ("page", "limit")},
            rate_limit=status,
        )

    async def metrics(self, principal_id: str, params: SearchParams) -> MetricsReport:
        """Daily allow/deny counts and per-prefix operation counts."""
        status = await self._authorize(principal_id, Action.AUDIT_VIEW_METRICS)
        start, end = self._date_range(params)
        await self._recorder.record_access(
            principal_id,
            self.METRICS_VIEW,
            {"startDate": start.isoformat(), "endDate": end.isoformat()},
        )

        try:
            daily = await self._sink.daily_metrics(_day_start(start), _day_end(end))
        except Exception as e:
            logger.error(f"Audit metrics query failed: {e}")
            raise StoreUnavailable("metrics query failed") from e

        return MetricsReport(
            start_date=start,
            end_date=end,
            daily=daily,
            summary=summarize_metrics(daily),
            rate_limit=status,
            generated_at=self._clock(),
        )

    async def token_stats(self, principal_id: str, params: SearchParams) -> TokenReport:
        """Daily credential issuance and usage counts."""
        status = await self._authorize(principal_id, Action.AUDIT_VIEW_TOKENS)
        start, end = self._date_range(params)
        await self._recorder.record_access(
            principal_id,
            self.TOKENS_VIEW,
            {"startDate": start.isoformat(), "endDate": end.isoformat()},
        )

        try:
            credentials = await self._credentials.list_issued_between(
                _day_start(start), _day_end(end)
            )
        except Exception as e:
            logger.error(f"Token stats query failed: {e}")
            raise StoreUnavailable("credential query failed") from e

        now = self._clock()
        daily = token_stats_by_day(credentials, now)
        return TokenReport(
            start_date=start,
            end_date=end,
            daily=daily,
            summary=summarize_tokens(daily),
            rate_limit=status,
            generated_at=now,
        )

    async def active_judges(self, principal_id: str, params: SearchParams) -> JudgeActivityReport:
        """
        Distinct active judges and their action count per day.

        Gated on the metrics attribute. Judge identities never leave the
        store, only counts.
        """
        status = await self._authorize(principal_id, Action.AUDIT_VIEW_METRICS)
        start, end = self._date_range(params)
        await self._recorder.record_access(
            principal_id,
            self.JUDGES_VIEW,
            {"startDate": start.isoformat(), "endDate": end.isoformat()},
        )

        try:
            daily = await self._sink.daily_active_judges(_day_start(start), _day_end(end))
        except Exception as e:
            logger.error(f"Judge activity query failed: {e}")
            raise StoreUnavailable("judge activity query failed") from e

        return JudgeActivityReport(
            start_date=start,
            end_date=end,
            daily=daily,
            summary=summarize_judges(daily),
            rate_limit=status,
            generated_at=self._clock(),
        )

    async def _authorize(self, principal_id: str, action: Action) -> RateLimitStatus:
        await self._evaluator.enforce_permission(principal_id, action.value, AUDIT_RESOURCE)

        status = self._limiter.check(
            principal_id,
            limit=self._settings.audit_rate_limit_requests,
            window_ms=self._settings.rate_limit_window_seconds * 1000,
        )
        if not status.allowed:
            raise RateLimited(status, f"audit quota exceeded for {action.value}")
        return status

    def _date_range(self, params: SearchParams) -> tuple[date, date]:
        end = params.end_date or self._clock().date()
        start = params.start_date or (
            end - timedelta(days=self._settings.audit_default_range_days)
        )
        return start, end


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min)


def _day_end(day: date) -> datetime:
    return datetime.combine(day, time.max)
