from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import DateTime, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    sessionmaker,
)

from tenant_billing.config import settings
from tenant_billing.errors import TransientStoreError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """Mixin that adds created_at / updated_at columns to any model.

    Usage::

        class MyModel(TimestampMixin, Base):
            __tablename__ = "my_table"
            ...
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


def build_engine(database_url: str | None = None) -> Engine:
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )


class LedgerStore:
    """Transactional handle over the tenant/subscription/payment tables.

    Constructed by the process entry point and passed to the billing core.
    The owner calls ``open()`` on startup and ``close()`` on shutdown;
    services only borrow sessions through ``transaction()`` and ``session()``.
    """

    def __init__(
        self, database_url: str | None = None, *, engine: Engine | None = None
    ) -> None:
        self._database_url = database_url
        self._engine = engine
        self._sessionmaker: sessionmaker[Session] | None = None
        if engine is not None:
            self._bind(engine)

    def _bind(self, engine: Engine) -> None:
        self._engine = engine
        self._sessionmaker = sessionmaker(
            bind=engine, autoflush=False, expire_on_commit=False
        )

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("LedgerStore is not open")
        return self._engine

    @property
    def is_open(self) -> bool:
        return self._sessionmaker is not None

    def open(self) -> LedgerStore:
        if self._sessionmaker is None:
            self._bind(self._engine or build_engine(self._database_url))
            logger.info("Ledger store opened")
        return self

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._sessionmaker = None
        logger.info("Ledger store closed")

    def _new_session(self) -> Session:
        if self._sessionmaker is None:
            raise RuntimeError("LedgerStore is not open")
        return self._sessionmaker()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Run one atomic unit of work; commit on success, roll back on error."""
        db = self._new_session()
        try:
            with db.begin():
                yield db
        except OperationalError as exc:
            logger.warning("Ledger transaction failed: %s", exc)
            raise TransientStoreError("Ledger store unavailable") from exc
        finally:
            db.close()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read-only scope; nothing is committed."""
        db = self._new_session()
        try:
            yield db
        except OperationalError as exc:
            raise TransientStoreError("Ledger store unavailable") from exc
        finally:
            db.close()
