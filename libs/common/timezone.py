"""
모든 서비스가 공유하는 UTC 시간 유틸리티
쿠폰 월간 사용 횟수는 UTC 기준 월로 집계합니다.
"""
import calendar
from datetime import datetime, timezone

UTC = timezone.utc


def now_utc() -> datetime:
    """현재 UTC 시간 반환 (timezone-aware)"""
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """
    datetime에 UTC 시간대를 보장합니다.

    MySQL DATETIME 컬럼은 시간대 없이 반환되지만 UTC로 저장되어 있으므로
    변환하지 않고 UTC 시간대만 붙입니다.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def month_key(dt: datetime | None = None) -> str:
    """주어진 시각(없으면 현재)의 `YYYY-MM`"""
    dt = ensure_utc(dt) or now_utc()
    return f"{dt.year:04d}-{dt.month:02d}"


def first_of_next_month(dt: datetime | None = None) -> datetime:
    dt = ensure_utc(dt) or now_utc()
    if dt.month == 12:
        return datetime(dt.year + 1, 1, 1, tzinfo=UTC)
    return datetime(dt.year, dt.month + 1, 1, tzinfo=UTC)


def add_months(dt: datetime, months: int) -> datetime:
    """
    달력 기준으로 개월 수를 더합니다. 일자는 대상 월의 마지막 날로 맞춥니다.

    Args:
        dt: 기준 시각
        months: 더할 개월 수 (음수 가능)

    Returns:
        시각은 그대로 유지한 datetime
    """
    total = dt.month - 1 + months
    year = dt.year + total // 12
    month = total % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)
