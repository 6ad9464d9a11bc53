"""Write helpers shared by the domain services.

The store gives us per-statement atomicity and uniqueness constraints, nothing
more. These helpers turn its failures into domain errors and run the second
step of a composite write with a bounded number of attempts.
"""
from collections.abc import Awaitable, Callable
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, DisconnectionError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.core.errors import Conflict, InvalidReference, TransientStoreError

logger = logging.getLogger("giftcircle.store")

T = TypeVar("T")

_CENT = Decimal("0.01")


def money(value) -> Decimal:
    """Normalise an amount to a two-decimal ``Decimal``."""
    if isinstance(value, Decimal):
        return value.quantize(_CENT, rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "sqlstate", None) == "23505" or getattr(orig, "pgcode", None) == "23505":
        return True
    text = str(orig or exc).lower()
    return "unique" in text or "duplicate" in text


def is_transient(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, (OperationalError, DisconnectionError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


async def commit_or_translate(session: AsyncSession, conflict: Conflict | None = None) -> None:
    """Commit, mapping store failures onto the domain taxonomy.

    A uniqueness violation becomes ``conflict`` when one is given; other
    integrity failures are dangling references. Connection-level failures are
    retryable. The session is rolled back before anything is raised.
    """
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if conflict is not None and is_unique_violation(exc):
            raise conflict from exc
        raise InvalidReference("Referenced record does not exist") from exc
    except TimeoutError as exc:
        await session.rollback()
        raise TransientStoreError("Storage timed out, retry the operation") from exc
    except SQLAlchemyError as exc:
        await session.rollback()
        if is_transient(exc):
            raise TransientStoreError("Storage temporarily unavailable, retry the operation") from exc
        raise


async def retry_step(
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    step: str,
) -> T:
    """Run the dependent step of a composite write up to ``attempts`` times.

    Domain conflicts are returned to the caller on the first occurrence since
    repeating them cannot help. The last store failure is re-raised.
    """
    last_exc: Exception | None = None
    for attempt in range(1, max(1, attempts) + 1):
        try:
            return await operation()
        except Conflict:
            raise
        except (SQLAlchemyError, TransientStoreError, InvalidReference) as exc:
            last_exc = exc
            logger.warning("Step %s failed attempt=%s/%s: %s", step, attempt, attempts, exc)
    assert last_exc is not None
    raise last_exc
