"""
Recurring game series and occurrence materialization.

A series pairs a template with a cron expression. Games are materialized
lazily: each call to ``materialize`` walks the schedule from the series
cursor (``last_generated_date``) up to a look-ahead horizon and builds at
most a fixed number of games. Every game is committed on its own, so an
interrupted run can simply be repeated.
"""

from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError, InterfaceError
from sqlalchemy.ext.asyncio import AsyncSession

from agon.database.models import GameInstance, RecurringSeries
from agon.services import instance_builder
from agon.services.errors import (
    SeriesNotFoundError,
    StoreUnavailableError,
    storage_errors,
)
from agon.services.schedule_service import occurrences_after, validate_cron_expression
from agon.utils.constants import RECURRING_LOOK_AHEAD_DAYS, RECURRING_MAX_BATCH_SIZE
from agon.utils.datetime_utils import utcnow, start_of_day_utc
from agon.utils.ids import generate_id

logger = logging.getLogger(__name__)


async def create_series(
    session: AsyncSession,
    template_id: str,
    cron_schedule: str,
    start_date: date,
    end_date: Optional[date] = None,
) -> RecurringSeries:
    """
    Create and commit a recurring series for a template.

    Args:
        session: Database session
        template_id: Template the series instantiates
        cron_schedule: Cron expression (validated here)
        start_date: First date the series may produce games after
        end_date: Optional last date (inclusive)

    Returns:
        The committed RecurringSeries

    Raises:
        InvalidExpressionError: If the cron expression is malformed
        ConstraintViolationError: If the template already has a series
        StoreUnavailableError: On transient storage failures
    """
    normalized = validate_cron_expression(cron_schedule)
    if end_date is not None and end_date < start_date:
        raise ValueError("end_date cannot be before start_date")

    series = RecurringSeries(
        id=generate_id(),
        template_id=template_id,
        cron_schedule=normalized,
        start_date=start_date,
        end_date=end_date,
        last_generated_date=None,
        is_active=True,
        created_at=utcnow(),
    )
    async with storage_errors(session, f"Failed to create series for template {template_id}"):
        session.add(series)
        await session.commit()

    logger.info(
        f"Created recurring series {series.id} for template {template_id} "
        f"({normalized!r}, {start_date.isoformat()} to "
        f"{end_date.isoformat() if end_date else 'open-ended'})"
    )
    return series


async def get_series(session: AsyncSession, series_id: str) -> Optional[RecurringSeries]:
    """Get a recurring series by ID, always reading the stored row."""
    result = await session.execute(
        select(RecurringSeries)
        .where(RecurringSeries.id == series_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def set_series_active(session: AsyncSession, series_id: str, is_active: bool) -> Dict:
    """
    Pause or resume a series. Paused series are skipped by ``materialize``.

    Raises:
        SeriesNotFoundError: If the series does not exist
        StoreUnavailableError: On transient storage failures
    """
    async with storage_errors(session, f"Failed to update series {series_id}"):
        result = await session.execute(
            update(RecurringSeries)
            .where(RecurringSeries.id == series_id)
            .values(is_active=is_active)
        )
        if result.rowcount == 0:
            await session.rollback()
            raise SeriesNotFoundError(f"Recurring series {series_id} not found")
        await session.commit()

    logger.info(f"Series {series_id} {'resumed' if is_active else 'paused'}")
    series = await get_series(session, series_id)
    return series_to_dict(series)


async def _occurrence_exists(session: AsyncSession, series_id: str, occurrence_date: date) -> bool:
    result = await session.execute(
        select(GameInstance.id).where(
            GameInstance.recurring_game_id == series_id,
            GameInstance.occurrence_date == occurrence_date,
        )
    )
    return result.first() is not None


async def _advance_cursor(session: AsyncSession, series_id: str, cursor: date) -> None:
    await session.execute(
        update(RecurringSeries)
        .where(RecurringSeries.id == series_id)
        .values(last_generated_date=cursor)
    )
    await session.commit()


async def materialize(
    session: AsyncSession,
    series_id: str,
    clock: Callable[[], datetime] = utcnow,
    look_ahead_days: int = RECURRING_LOOK_AHEAD_DAYS,
    max_batch_size: int = RECURRING_MAX_BATCH_SIZE,
) -> int:
    """
    Build the missing games of a series inside its current window.

    The window runs from the cursor (or the start date when nothing was
    generated yet), exclusive, to the earlier of the series end date and
    ``clock()`` + ``look_ahead_days``, inclusive. Occurrences that already
    have a game are skipped. At most ``max_batch_size`` games are built.

    The cursor is written only when at least one game was built in this
    call; a run that only finds existing games leaves it where it was.

    Args:
        session: Database session (committed once per built game)
        series_id: Series to materialize
        clock: Returns the current UTC time
        look_ahead_days: Horizon of the window in days
        max_batch_size: Maximum games built per call

    Returns:
        Number of games built by this call

    Raises:
        SeriesNotFoundError: If the series does not exist
        InvalidExpressionError: If the stored cron expression is malformed
        StoreUnavailableError: On transient storage failures
    """
    try:
        series = await get_series(session, series_id)
    except (OperationalError, InterfaceError) as e:
        await session.rollback()
        raise StoreUnavailableError(f"Storage unavailable: {e.orig}") from e
    if series is None:
        raise SeriesNotFoundError(f"Recurring series {series_id} not found")

    # Plain copies: a rolled-back build expires every ORM object in the session
    template_id = series.template_id
    cron_schedule = series.cron_schedule
    end_date = series.end_date
    window_start = series.last_generated_date or series.start_date

    if not series.is_active:
        logger.warning(f"Series {series_id} is inactive, not materializing")
        return 0

    # Stored expressions are never re-validated after insert, so check again
    validate_cron_expression(cron_schedule)

    horizon = clock().date() + timedelta(days=look_ahead_days)
    window_end = min(end_date, horizon) if end_date is not None else horizon

    logger.info(
        f"Materializing series {series_id} from {window_start.isoformat()} "
        f"to {window_end.isoformat()}"
    )

    generated_count = 0
    cursor = window_start
    try:
        for occurrence in occurrences_after(cron_schedule, start_of_day_utc(window_start)):
            occurrence_date = occurrence.date()

            if occurrence_date > window_end:
                break

            # The evaluator is exclusive of its start instant, but the start
            # is midnight, so a same-day occurrence can still show up here.
            if occurrence_date <= window_start:
                logger.debug(f"Series {series_id}: skipping {occurrence_date} (not after window start)")
                continue

            if await _occurrence_exists(session, series_id, occurrence_date):
                logger.debug(f"Series {series_id}: game already exists for {occurrence_date}, skipping")
                cursor = occurrence_date
                continue

            game = await instance_builder.build_instance(
                session,
                template_id,
                occurrence,
                series_id=series_id,
                occurrence_date=occurrence_date,
            )
            cursor = occurrence_date
            if game is None:
                # Lost a race with a concurrent materialize; the game exists
                continue

            generated_count += 1
            if generated_count >= max_batch_size:
                break

        if generated_count > 0:
            await _advance_cursor(session, series_id, cursor)
            logger.info(f"Series {series_id}: cursor advanced to {cursor.isoformat()}")
    except (OperationalError, InterfaceError) as e:
        await session.rollback()
        raise StoreUnavailableError(f"Storage unavailable: {e.orig}") from e

    logger.info(f"Generated {generated_count} game(s) for series {series_id}")
    return generated_count


async def materialize_active_series(
    session: AsyncSession,
    clock: Callable[[], datetime] = utcnow,
    look_ahead_days: int = RECURRING_LOOK_AHEAD_DAYS,
    max_batch_size: int = RECURRING_MAX_BATCH_SIZE,
) -> Dict[str, int]:
    """
    Run ``materialize`` for every active series.

    A failing series is logged and left out of the result; the others still run.

    Returns:
        Dict of series_id -> number of games built
    """
    result = await session.execute(
        select(RecurringSeries.id)
        .where(RecurringSeries.is_active.is_(True))
        .order_by(RecurringSeries.created_at, RecurringSeries.id)
    )
    series_ids: List[str] = list(result.scalars().all())

    results: Dict[str, int] = {}
    for series_id in series_ids:
        try:
            results[series_id] = await materialize(
                session,
                series_id,
                clock=clock,
                look_ahead_days=look_ahead_days,
                max_batch_size=max_batch_size,
            )
        except Exception as e:
            logger.error(f"Error materializing series {series_id}: {e}", exc_info=True)
            await session.rollback()

    logger.info(
        f"Materialized {len(results)}/{len(series_ids)} active series, "
        f"{sum(results.values())} game(s) built"
    )
    return results


async def get_first_generated_game_id(session: AsyncSession, series_id: str) -> Optional[str]:
    """ID of the earliest materialized game of a series."""
    result = await session.execute(
        select(GameInstance.id)
        .where(GameInstance.recurring_game_id == series_id)
        .order_by(GameInstance.occurrence_date.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def series_to_dict(series: RecurringSeries) -> Dict:
    """Convert RecurringSeries model to dict."""
    return {
        "id": series.id,
        "template_id": series.template_id,
        "cron_schedule": series.cron_schedule,
        "start_date": series.start_date.isoformat() if series.start_date else None,
        "end_date": series.end_date.isoformat() if series.end_date else None,
        "last_generated_date": (
            series.last_generated_date.isoformat() if series.last_generated_date else None
        ),
        "is_active": series.is_active,
        "created_at": series.created_at.isoformat() if series.created_at else None,
    }
