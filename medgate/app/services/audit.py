"""Append-only decision log.

Every authorization decision and every scheduling commit or rejection ends up
here as a hash-chained ``DecisionRecord``. Recording is fire-and-forget: the
caller only enqueues, and a sink failure is logged and counted in
``AuditLog.dropped`` but never reaches the action that produced the record.
"""
from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, List, Optional, Protocol, Tuple

from sqlalchemy import and_, or_
from sqlmodel import select

from ..domain.chain import ChainReport, seal, verify_chain
from ..domain.models import DecisionCategory, DecisionRecord, Outcome, as_utc, utcnow
from ..domain.policy import Action, Identity
from ..infra.db import SessionFactory

logger = logging.getLogger(__name__)

Cursor = Tuple[datetime, int]


@dataclass(frozen=True)
class AuditFilter:
    subject_id: Optional[str] = None
    outcome: Optional[Outcome] = None
    category: Optional[DecisionCategory] = None
    resource_type: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.since is not None:
            object.__setattr__(self, "since", as_utc(self.since))
        if self.until is not None:
            object.__setattr__(self, "until", as_utc(self.until))

    def matches(self, record: DecisionRecord) -> bool:
        if self.subject_id is not None and record.subject_id != self.subject_id:
            return False
        if self.outcome is not None and record.outcome != self.outcome:
            return False
        if self.category is not None and record.category != self.category:
            return False
        if self.resource_type is not None and record.resource_type != self.resource_type:
            return False
        if self.since is not None and record.created_at < self.since:
            return False
        if self.until is not None and record.created_at >= self.until:
            return False
        return True


class AuditSink(Protocol):
    def write(self, record: DecisionRecord) -> None: ...

    def read(
        self, flt: AuditFilter, after: Optional[Cursor], limit: int
    ) -> List[DecisionRecord]: ...

    def last_hash(self) -> Optional[str]: ...


class MemoryAuditSink:
    def __init__(self) -> None:
        self._records: List[DecisionRecord] = []
        self._lock = threading.Lock()

    def write(self, record: DecisionRecord) -> None:
        with self._lock:
            record.id = len(self._records) + 1
            self._records.append(record)

    def read(
        self, flt: AuditFilter, after: Optional[Cursor], limit: int
    ) -> List[DecisionRecord]:
        with self._lock:
            rows = sorted(self._records, key=_cursor)
        rows = [row for row in rows if flt.matches(row) and (after is None or _cursor(row) > after)]
        return rows[:limit]

    def last_hash(self) -> Optional[str]:
        with self._lock:
            return self._records[-1].curr_hash if self._records else None


class SqlAuditSink:
    """Writes through its own session so a record never shares the action's transaction."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    def write(self, record: DecisionRecord) -> None:
        with self.session_factory() as session:
            session.add(record)
            session.flush()
            session.refresh(record)

    def read(
        self, flt: AuditFilter, after: Optional[Cursor], limit: int
    ) -> List[DecisionRecord]:
        stmt = select(DecisionRecord)
        if flt.subject_id is not None:
            stmt = stmt.where(DecisionRecord.subject_id == flt.subject_id)
        if flt.outcome is not None:
            stmt = stmt.where(DecisionRecord.outcome == flt.outcome)
        if flt.category is not None:
            stmt = stmt.where(DecisionRecord.category == flt.category)
        if flt.resource_type is not None:
            stmt = stmt.where(DecisionRecord.resource_type == flt.resource_type)
        if flt.since is not None:
            stmt = stmt.where(DecisionRecord.created_at >= flt.since)
        if flt.until is not None:
            stmt = stmt.where(DecisionRecord.created_at < flt.until)
        if after is not None:
            created_at, record_id = after
            stmt = stmt.where(
                or_(
                    DecisionRecord.created_at > created_at,
                    and_(DecisionRecord.created_at == created_at, DecisionRecord.id > record_id),
                )
            )
        stmt = stmt.order_by(DecisionRecord.created_at.asc(), DecisionRecord.id.asc()).limit(limit)
        with self.session_factory() as session:
            return list(session.exec(stmt).all())

    def last_hash(self) -> Optional[str]:
        stmt = (
            select(DecisionRecord.curr_hash)
            .order_by(DecisionRecord.created_at.desc(), DecisionRecord.id.desc())
            .limit(1)
        )
        with self.session_factory() as session:
            return session.exec(stmt).first()


class AuditQuery:
    """Lazy, restartable view over the log; each iteration re-reads the sink.

    ``settle`` runs before every iteration so records accepted earlier are
    visible to it.
    """

    def __init__(
        self,
        sink: AuditSink,
        flt: AuditFilter,
        page_size: int = 200,
        settle: Optional[Callable[[], None]] = None,
    ) -> None:
        self.sink = sink
        self.filter = flt
        self.page_size = page_size
        self.settle = settle

    def __iter__(self) -> Iterator[DecisionRecord]:
        if self.settle is not None:
            self.settle()
        cursor: Optional[Cursor] = None
        while True:
            page = self.sink.read(self.filter, cursor, self.page_size)
            yield from page
            if len(page) < self.page_size:
                return
            cursor = _cursor(page[-1])


_STOP = object()


class AuditLog:
    """Queues records and writes them from one background thread.

    ``record`` stamps the entry and enqueues it; the writer thread seals and
    stores entries in FIFO order, so the hash chain follows append order.
    """

    def __init__(
        self,
        sink: AuditSink,
        clock: Callable[[], datetime] = utcnow,
        max_pending: int = 10000,
    ) -> None:
        self.sink = sink
        self.clock = clock
        self.dropped = 0
        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)
        self._lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._writer: Optional[threading.Thread] = None
        # owned by the writer thread
        self._last_hash: Optional[str] = None
        self._primed = False

    def record(self, entry: DecisionRecord) -> None:
        with self._lock:
            try:
                entry.created_at = as_utc(self.clock())
                self._ensure_writer()
                self._queue.put_nowait(entry)
            except queue.Full:
                self._count_drop()
                logger.warning(
                    "decision log backlog full; dropped %s %s/%s",
                    entry.subject_id,
                    entry.verb,
                    entry.resource_type,
                )
            except Exception:
                self._count_drop()
                logger.exception("decision record rejected before queueing")

    def flush(self) -> None:
        """Block until every record accepted so far has been written or dropped."""
        self._queue.join()

    def close(self) -> None:
        """Drain the backlog and stop the writer thread."""
        with self._lock:
            writer, self._writer = self._writer, None
            if writer is None:
                return
            self._queue.put(_STOP)
            writer.join()

    def _ensure_writer(self) -> None:
        # caller holds self._lock
        if self._writer is None:
            self._writer = threading.Thread(target=self._drain, name="audit-writer", daemon=True)
            self._writer.start()

    def _drain(self) -> None:
        while True:
            entry = self._queue.get()
            try:
                if entry is _STOP:
                    return
                self._write(entry)
            finally:
                self._queue.task_done()

    def _write(self, entry: DecisionRecord) -> None:
        try:
            if not self._primed:
                self._last_hash = self.sink.last_hash()
                self._primed = True
            seal(entry, self._last_hash)
            self.sink.write(entry)
            self._last_hash = entry.curr_hash
        except Exception:
            self._count_drop()
            logger.exception(
                "decision record dropped (%s %s/%s)",
                entry.subject_id,
                entry.verb,
                entry.resource_type,
            )

    def _count_drop(self) -> None:
        with self._stats_lock:
            self.dropped += 1

    def record_authorization(
        self,
        identity: Identity,
        action: Action,
        allowed: bool,
        reason: str,
    ) -> None:
        self.record(
            DecisionRecord(
                category=DecisionCategory.AUTHORIZATION,
                subject_id=identity.subject_id,
                role=_text(identity.role),
                verb=action.verb.value,
                resource_type=action.resource_type.value,
                resource_id=action.resource_id,
                outcome=Outcome.ALLOW if allowed else Outcome.DENY,
                reason=reason,
            )
        )

    def record_scheduling(
        self,
        operation: str,
        appointment_id: Optional[str],
        committed: bool,
        reason: str,
        actor: Optional[Identity] = None,
    ) -> None:
        self.record(
            DecisionRecord(
                category=DecisionCategory.SCHEDULING,
                subject_id=actor.subject_id if actor else "system",
                role=_text(actor.role) if actor else None,
                verb=operation,
                resource_type="appointment",
                resource_id=appointment_id,
                outcome=Outcome.ALLOW if committed else Outcome.DENY,
                reason=reason,
            )
        )

    def query(self, flt: Optional[AuditFilter] = None) -> AuditQuery:
        return AuditQuery(self.sink, flt or AuditFilter(), settle=self.flush)

    def verify(self) -> ChainReport:
        return verify_chain(self.query())


def _cursor(record: DecisionRecord) -> Cursor:
    return (record.created_at, record.id or 0)


def _text(value: object) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))
