"""
Unit of work for multi-step writes.

The request session is the transaction. `unit_of_work()` records the steps
a service completes; if anything fails the whole transaction is rolled back,
and a database failure that happens after some steps were applied surfaces
as PartialWriteError naming those (now rolled back) steps.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from roleforge.errors import ConflictError, PartialWriteError

logger = logging.getLogger(__name__)


class UnitOfWork:
    def __init__(self, operation: str):
        self.operation = operation
        self.completed: list[str] = []

    def step(self, name: str) -> None:
        self.completed.append(name)


@asynccontextmanager
async def unit_of_work(session: AsyncSession, operation: str) -> AsyncIterator[UnitOfWork]:
    uow = UnitOfWork(operation)
    try:
        yield uow
        await session.flush()
    except StaleDataError as exc:
        await session.rollback()
        raise ConflictError(f"{operation}: the role was modified concurrently, reload and retry") from exc
    except IntegrityError as exc:
        await session.rollback()
        logger.warning("%s rolled back after %s: %s", operation, uow.completed, exc.orig)
        if uow.completed:
            raise PartialWriteError(
                f"{operation} failed after partial progress; all changes were rolled back",
                completed_steps=uow.completed,
            ) from exc
        raise ConflictError(f"{operation} conflicts with existing data") from exc
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("%s rolled back after %s: %s", operation, uow.completed, exc)
        if uow.completed:
            raise PartialWriteError(
                f"{operation} failed after partial progress; all changes were rolled back",
                completed_steps=uow.completed,
            ) from exc
        raise
