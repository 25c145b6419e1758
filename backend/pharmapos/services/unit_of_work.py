# Overview: Explicit commit/rollback boundary shared by every multi-step write.

from __future__ import annotations

from typing import Callable

from flask import current_app
from sqlalchemy import text

from ..extensions import db


class UnitOfWork:
    """
    One atomic unit of work over the SQLAlchemy session.

    Usage:
        uow = UnitOfWork()
        with uow:
            ...  # reads, writes, flushes
            uow.step("sale_persisted")
        # committed here; any exception inside the block rolls everything back

    - Entering on SQLite issues BEGIN IMMEDIATE so the write lock is held for
      the whole unit (SQLite has no row locks).
    - step(name) records progress and calls the optional on_step hook; a hook
      that raises aborts the unit exactly like a failure at that point.
    - Rollback is unconditional on error. If the rollback itself fails it is
      logged and the original exception still propagates.
    """

    def __init__(self, session=None, *, on_step: Callable[[str], None] | None = None):
        self.session = session if session is not None else db.session
        self.on_step = on_step
        self.steps: list[str] = []
        self.committed = False
        self._active = False

    def __enter__(self) -> "UnitOfWork":
        if self._active:
            raise RuntimeError("UnitOfWork is already active")
        if self.session.new or self.session.dirty or self.session.deleted:
            raise RuntimeError("UnitOfWork entered with pending session changes")

        if self.session.get_bind().dialect.name == "sqlite":
            self.session.execute(text("BEGIN IMMEDIATE"))

        self._active = True
        self.committed = False
        self.steps = []
        return self

    def step(self, name: str) -> None:
        self.steps.append(name)
        if self.on_step is not None:
            self.on_step(name)

    def flush(self) -> None:
        self.session.flush()

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._active = False
        if exc_type is not None:
            self._rollback()
            return False

        try:
            self.session.commit()
        except Exception:
            self._rollback()
            raise
        self.committed = True
        return False

    def _rollback(self) -> None:
        try:
            self.session.rollback()
        except Exception:
            current_app.logger.exception("Rollback failed; original error is re-raised")
