"""Scan checkpoints: newest event timestamp ingested, per log source name."""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ..errors import PersistenceFailure
from ..models.scan_checkpoint import ScanCheckpoint
from ..utils.logging import get_logger
from ..utils.timeutil import from_db, to_db

logger = get_logger("detection.checkpoint")


class CheckpointStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def get(self, source: str) -> Optional[datetime]:
        try:
            async with self._session_factory() as session:
                value = (await session.execute(
                    select(ScanCheckpoint.last_processed_timestamp).where(ScanCheckpoint.source == source)
                )).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"checkpoint read failed: {e}") from e
        return from_db(value)

    async def advance(self, source: str, timestamp: datetime) -> datetime:
        """Move the checkpoint forward to ``timestamp``. Never moves it backwards.

        Returns the checkpoint value after the call.
        """
        new_value = to_db(timestamp)
        try:
            async with self._session_factory() as session:
                row = (await session.execute(
                    select(ScanCheckpoint).where(ScanCheckpoint.source == source)
                )).scalar_one_or_none()
                if row is None:
                    session.add(ScanCheckpoint(source=source, last_processed_timestamp=new_value))
                elif new_value > row.last_processed_timestamp:
                    row.last_processed_timestamp = new_value
                else:
                    return from_db(row.last_processed_timestamp)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"checkpoint write failed: {e}") from e
        logger.debug("checkpoint_advanced", source=source, timestamp=new_value.isoformat())
        return from_db(new_value)
