"""
타임존 유틸리티

일일 보너스, 월별 수익 집계 등 "달력상의 하루/한 달" 판단은 경과 시간이 아니라
설정된 로컬 타임존의 날짜로 비교합니다.
"""

from datetime import date, datetime, time, timezone

import pytz


def get_timezone(tz_name: str):
    return pytz.timezone(tz_name)


def to_local(dt: datetime, tz_name: str) -> datetime:
    """UTC 또는 다른 타임존의 datetime을 로컬 타임존으로 변환합니다."""
    if dt.tzinfo is None:
        # naive datetime은 UTC로 가정
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(get_timezone(tz_name))


def local_date(dt: datetime, tz_name: str) -> date:
    """주어진 시각의 로컬 달력 날짜"""
    return to_local(dt, tz_name).date()


def local_midnight(day: date, tz_name: str) -> datetime:
    """로컬 날짜의 00:00을 UTC로 반환합니다 (서머타임 전환일 포함)."""
    midnight = get_timezone(tz_name).localize(datetime.combine(day, time.min))
    return midnight.astimezone(timezone.utc)


def first_of_month(day: date) -> date:
    return day.replace(day=1)


def first_of_previous_month(day: date) -> date:
    if day.month == 1:
        return date(day.year - 1, 12, 1)
    return date(day.year, day.month - 1, 1)


def first_of_next_month(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)
