"""Shared test doubles for the scheduling unit tests."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

from scheduler.services.constraint_source import WorkingHoursEntry
from scheduler.utils.time_model import to_minutes


class FakeDatabase:
    """
    Stand-in for database.connection.Database.

    Every ``session()`` yields the same AsyncMock session, so tests can set
    ``execute`` side effects and assert on ``commit``/``rollback``.
    """

    def __init__(self, session: AsyncMock | None = None) -> None:
        self.session_obj = session or make_session()
        self.sessions_opened = 0

    @asynccontextmanager
    async def session(self):
        self.sessions_opened += 1
        try:
            yield self.session_obj
        except Exception:
            await self.session_obj.rollback()
            raise


def make_session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    return session


def scalar_result(value) -> MagicMock:
    """Result object for ``scalar_one_or_none()`` / ``scalar()`` queries."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar.return_value = value
    return result


def scalars_result(values) -> MagicMock:
    """Result object for ``scalars().all()`` queries."""
    result = MagicMock()
    result.scalars.return_value.all.return_value = list(values)
    return result


def weekday_hours(open_time: str = "09:00", close_time: str = "17:00") -> dict[int, WorkingHoursEntry]:
    """Mon-Fri open, weekend without hours."""
    return {
        day: WorkingHoursEntry(day, to_minutes(open_time), to_minutes(close_time))
        for day in range(5)
    }
