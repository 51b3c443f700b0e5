"""Atomic commit scope for writes spanning several documents.

A ``UnitOfWork`` is handed to every store call that must land together.
With MongoDB transactions available it wraps a client session and a
transaction: writes pass ``session=uow.session`` and are committed on a clean
exit, aborted otherwise. Against a standalone server (``MONGO_TRANSACTIONS``
off) ``uow.session`` is ``None``; each write registers a compensating write
and the compensations are replayed newest-first when the scope exits with an
exception. Stock decrements stay safe in both modes because they are
conditional updates on the stock field itself.
"""

import logging
from typing import Any, Callable, List, Optional, Tuple

from pymongo.errors import BulkWriteError, PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from app.core import config
from app.db.mongo import get_client

logger = logging.getLogger("DB")


class UnitOfWork:
    def __init__(self, client=None, transactional: Optional[bool] = None):
        self.client = client if client is not None else get_client()
        self.transactional = config.MONGO_TRANSACTIONS if transactional is None else transactional
        self.session = None
        self._compensations: List[Tuple[Callable[..., Any], tuple, dict]] = []

    def __enter__(self):
        if self.transactional:
            self.session = self.client.start_session()
            self.session.start_transaction(
                read_concern=ReadConcern("snapshot"),
                write_concern=WriteConcern("majority"),
                max_commit_time_ms=config.MONGO_TIMEOUT_MS,
            )
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is None:
                self.commit()
            else:
                self.abort()
        finally:
            if self.session is not None:
                self.session.end_session()
                self.session = None
        return False

    def compensate(self, fn: Callable[..., Any], *args, **kwargs):
        """Register the write that undoes one already applied."""
        if self.session is None:
            self._compensations.append((fn, args, kwargs))

    def bulk_write(self, collection, operations: list, undo_operations: list):
        """Ordered bulk write; ``undo_operations[i]`` reverts ``operations[i]``."""
        try:
            result = collection.bulk_write(operations, ordered=True, session=self.session)
        except BulkWriteError as exc:
            errors = exc.details.get("writeErrors") or [{}]
            applied = errors[0].get("index", 0)
            if applied:
                self.compensate(collection.bulk_write, undo_operations[:applied], ordered=False)
            raise
        self.compensate(collection.bulk_write, undo_operations, ordered=False)
        return result

    def commit(self):
        if self.session is not None:
            attempts = max(1, config.MONGO_TRANSACTION_RETRIES)
            for attempt in range(1, attempts + 1):
                try:
                    self.session.commit_transaction()
                    break
                except PyMongoError as exc:
                    if attempt < attempts and exc.has_error_label("UnknownTransactionCommitResult"):
                        logger.warning("Commit result unknown, retrying commit")
                        continue
                    raise
        self._compensations.clear()

    def abort(self):
        if self.session is not None:
            if self.session.in_transaction:
                self.session.abort_transaction()
            return
        while self._compensations:
            fn, args, kwargs = self._compensations.pop()
            try:
                fn(*args, **kwargs)
            except PyMongoError as e:
                # keep unwinding; the remaining writes are independent
                logger.error(f"Compensating write failed: {e}")


def run_in_unit_of_work(work: Callable[[UnitOfWork], Any], client=None):
    """Run ``work(uow)`` atomically, retrying transient transaction aborts."""
    attempts = max(1, config.MONGO_TRANSACTION_RETRIES)
    for attempt in range(1, attempts + 1):
        try:
            with UnitOfWork(client) as uow:
                return work(uow)
        except PyMongoError as exc:
            if attempt < attempts and exc.has_error_label("TransientTransactionError"):
                logger.warning(f"Transient transaction error (attempt {attempt}/{attempts}): {exc}")
                continue
            raise
