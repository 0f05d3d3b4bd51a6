"""
Cron schedule evaluation for recurring games.

Expressions use the standard five-field form (minute, hour, day-of-month,
month, day-of-week) with an optional trailing seconds field. All instants
are UTC.
"""

from datetime import datetime
from typing import Iterator
import logging

from croniter import croniter, CroniterError

from agon.services.errors import InvalidExpressionError
from agon.utils.datetime_utils import ensure_utc

logger = logging.getLogger(__name__)

ALLOWED_FIELD_COUNTS = (5, 6)


def validate_cron_expression(expression: str) -> str:
    """
    Validate a cron expression and return it normalized.

    Args:
        expression: Cron expression text

    Returns:
        The expression with surrounding whitespace stripped

    Raises:
        InvalidExpressionError: If the expression cannot be parsed
    """
    if not isinstance(expression, str) or not expression.strip():
        raise InvalidExpressionError("Cron expression cannot be empty")

    normalized = " ".join(expression.split())
    field_count = len(normalized.split(" "))
    if field_count not in ALLOWED_FIELD_COUNTS:
        raise InvalidExpressionError(
            f"Cron expression must have 5 or 6 fields, got {field_count}: {expression!r}"
        )

    try:
        croniter(normalized)
    except (CroniterError, ValueError, KeyError) as e:
        raise InvalidExpressionError(f"Invalid cron expression {expression!r}: {e}") from e
    return normalized


def occurrences_after(expression: str, after: datetime) -> Iterator[datetime]:
    """
    Lazily yield the instants matching ``expression`` strictly after ``after``.

    The sequence is infinite for a well-formed expression; callers bound
    consumption. Each call returns a fresh iterator.

    Args:
        expression: Cron expression text
        after: Exclusive lower bound (naive values are treated as UTC)

    Yields:
        Timezone-aware UTC datetimes in strictly increasing order

    Raises:
        InvalidExpressionError: If the expression cannot be parsed
    """
    normalized = validate_cron_expression(expression)
    start = ensure_utc(after)
    return _iterate(normalized, start)


def _iterate(expression: str, start: datetime) -> Iterator[datetime]:
    schedule = croniter(expression, start)
    previous = start
    while True:
        try:
            candidate = ensure_utc(schedule.get_next(datetime))
        except CroniterError as e:
            # e.g. "0 0 30 2 *" parses but never fires
            raise InvalidExpressionError(f"Cron expression {expression!r} has no next occurrence: {e}") from e
        # croniter should never step backwards, but keep the sequence strictly increasing
        if candidate <= previous:
            logger.debug(f"Dropping non-increasing occurrence {candidate.isoformat()}")
            continue
        previous = candidate
        yield candidate
