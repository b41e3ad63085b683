import threading
import time
from datetime import datetime, timedelta

from medgate.app.domain.chain import verify_chain
from medgate.app.domain.models import DecisionCategory, Outcome
from medgate.app.domain.policy import Action, Identity, ResourceType, Verb
from medgate.app.infra.db import build_engine, init_db, session_factory
from medgate.app.services.audit import AuditFilter, AuditLog, AuditQuery, MemoryAuditSink, SqlAuditSink

START = datetime(2030, 1, 7, 8, 0)


class SteppingClock:
    """Returns START, START + step, START + 2*step, ..."""

    def __init__(self, step: timedelta = timedelta(minutes=1)):
        self.step = step
        self.calls = 0

    def __call__(self):
        moment = START + self.step * self.calls
        self.calls += 1
        return moment


def _read(log: AuditLog, subject: str, allowed: bool = True, resource_type=ResourceType.PATIENT):
    log.record_authorization(
        Identity(subject, "nurse"),
        Action(Verb.READ, resource_type, "r-1"),
        allowed,
        "ok" if allowed else "no matching rule",
    )


def _sql_sink():
    engine = build_engine("sqlite://")
    init_db(engine)
    return SqlAuditSink(session_factory(engine)), session_factory(engine)


# ── Ordering / laziness ──────────────────────────────────────────────

def test_query_is_timestamp_ordered():
    log = AuditLog(MemoryAuditSink(), clock=SteppingClock())
    for subject in ("a", "b", "c"):
        _read(log, subject)

    records = list(log.query())
    assert [r.subject_id for r in records] == ["a", "b", "c"]
    assert [r.created_at for r in records] == sorted(r.created_at for r in records)


def test_equal_timestamps_keep_append_order():
    log = AuditLog(MemoryAuditSink(), clock=lambda: START)
    for subject in ("a", "b", "c", "d", "e"):
        _read(log, subject)

    log.flush()
    query = AuditQuery(log.sink, AuditFilter(), page_size=2)
    assert [r.subject_id for r in query] == ["a", "b", "c", "d", "e"]
    assert log.verify().ok


def test_query_is_lazy_and_restartable():
    log = AuditLog(MemoryAuditSink(), clock=SteppingClock())
    _read(log, "a")
    query = log.query()

    assert [r.subject_id for r in query] == ["a"]
    _read(log, "b")
    assert [r.subject_id for r in query] == ["a", "b"]
    assert [r.subject_id for r in query] == ["a", "b"]


def test_filters_combine():
    log = AuditLog(MemoryAuditSink(), clock=SteppingClock())
    _read(log, "a", allowed=True)
    _read(log, "a", allowed=False)
    _read(log, "b", allowed=False, resource_type=ResourceType.MEDICAL_RECORD)
    log.record_scheduling("book", "apt-1", True, "scheduled")

    denied = list(log.query(AuditFilter(outcome=Outcome.DENY)))
    assert [(r.subject_id, r.resource_type) for r in denied] == [("a", "patient"), ("b", "medical_record")]

    assert len(list(log.query(AuditFilter(subject_id="a", outcome=Outcome.DENY)))) == 1
    assert len(list(log.query(AuditFilter(resource_type="medical_record")))) == 1

    scheduling = list(log.query(AuditFilter(category=DecisionCategory.SCHEDULING)))
    assert [(r.subject_id, r.verb, r.resource_id) for r in scheduling] == [("system", "book", "apt-1")]


def test_since_is_inclusive_and_until_exclusive():
    log = AuditLog(MemoryAuditSink(), clock=SteppingClock())
    for subject in ("a", "b", "c", "d"):
        _read(log, subject)

    window = AuditFilter(since=START + timedelta(minutes=1), until=START + timedelta(minutes=3))
    assert [r.subject_id for r in log.query(window)] == ["b", "c"]


# ── Fire-and-forget ──────────────────────────────────────────────────

class FlakySink(MemoryAuditSink):
    def __init__(self, fail_on: int):
        super().__init__()
        self.fail_on = fail_on
        self.writes = 0

    def write(self, record):
        self.writes += 1
        if self.writes == self.fail_on:
            raise RuntimeError("sink unavailable")
        super().write(record)


def test_sink_failure_is_swallowed_and_counted():
    log = AuditLog(FlakySink(fail_on=2), clock=SteppingClock())
    for subject in ("a", "b", "c"):
        _read(log, subject)

    log.flush()
    assert log.dropped == 1
    assert [r.subject_id for r in log.query()] == ["a", "c"]
    assert log.verify().ok


def test_broken_last_hash_lookup_is_swallowed():
    class NoHistorySink(MemoryAuditSink):
        def last_hash(self):
            raise ConnectionError("down")

    log = AuditLog(NoHistorySink())
    _read(log, "a")

    log.flush()
    assert log.dropped == 1
    assert list(log.query()) == []


def test_concurrent_recording_keeps_chain_in_order():
    log = AuditLog(MemoryAuditSink())

    def worker(index):
        for n in range(50):
            _read(log, f"s{index}-{n}")

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    report = log.verify()
    assert report.ok
    assert report.checked == 400
    assert log.dropped == 0


def test_close_drains_backlog():
    class SlowSink(MemoryAuditSink):
        def write(self, record):
            time.sleep(0.01)
            super().write(record)

    sink = SlowSink()
    log = AuditLog(sink, clock=SteppingClock())
    for subject in ("a", "b", "c"):
        _read(log, subject)

    log.close()
    assert [r.subject_id for r in sink.read(AuditFilter(), None, 10)] == ["a", "b", "c"]

    _read(log, "d")
    assert [r.subject_id for r in log.query()] == ["a", "b", "c", "d"]
    assert log.verify().ok


def test_full_backlog_drops_instead_of_blocking():
    release = threading.Event()

    class StuckSink(MemoryAuditSink):
        def write(self, record):
            release.wait(5)
            super().write(record)

    log = AuditLog(StuckSink(), clock=SteppingClock(), max_pending=1)
    try:
        for subject in ("a", "b", "c", "d"):
            _read(log, subject)
        assert log.dropped >= 1
    finally:
        release.set()
    log.flush()
    assert log.verify().ok


# ── Hash chain ───────────────────────────────────────────────────────

def test_records_are_chained():
    log = AuditLog(MemoryAuditSink(), clock=SteppingClock())
    for subject in ("a", "b", "c"):
        _read(log, subject)

    records = list(log.query())
    assert records[0].prev_hash is None
    assert records[1].prev_hash == records[0].curr_hash
    assert records[2].prev_hash == records[1].curr_hash
    report = log.verify()
    assert report.ok
    assert report.checked == 3


def test_tampering_is_detected():
    log = AuditLog(MemoryAuditSink(), clock=SteppingClock())
    for subject in ("a", "b", "c"):
        _read(log, subject)

    list(log.query())[1].outcome = Outcome.ALLOW
    list(log.query())[1].reason = "edited"

    report = log.verify()
    assert not report.ok
    assert report.problems == ["record[2].curr_hash mismatch"]


def test_removed_record_breaks_link():
    log = AuditLog(MemoryAuditSink(), clock=SteppingClock())
    for subject in ("a", "b", "c"):
        _read(log, subject)

    records = list(log.query())
    report = verify_chain([records[0], records[2]])
    assert report.problems == ["record[3].prev_hash mismatch"]


# ── SQL sink ─────────────────────────────────────────────────────────

def test_sql_sink_round_trip_and_restart():
    sink, _ = _sql_sink()
    clock = SteppingClock()
    log = AuditLog(sink, clock=clock)
    _read(log, "a")
    _read(log, "b", allowed=False)

    log.flush()
    restarted = AuditLog(sink, clock=clock)
    _read(restarted, "c")

    records = list(restarted.query())
    assert [r.subject_id for r in records] == ["a", "b", "c"]
    assert records[2].prev_hash == records[1].curr_hash
    assert restarted.verify().ok
    assert [r.subject_id for r in restarted.query(AuditFilter(outcome=Outcome.DENY))] == ["b"]


def test_sql_sink_pages_with_equal_timestamps():
    sink, _ = _sql_sink()
    log = AuditLog(sink, clock=lambda: START)
    for subject in ("a", "b", "c", "d", "e"):
        _read(log, subject)

    log.flush()
    assert [r.subject_id for r in AuditQuery(sink, AuditFilter(), page_size=2)] == ["a", "b", "c", "d", "e"]
    window = AuditFilter(since=START, until=START + timedelta(seconds=1))
    assert len(list(log.query(window))) == 5
    assert list(log.query(AuditFilter(until=START))) == []


def test_verify_task_reports_chain(monkeypatch):
    from medgate.app.tasks import audit as audit_tasks

    sink, sessions = _sql_sink()
    log = AuditLog(sink, clock=SteppingClock())
    _read(log, "a")
    _read(log, "b")
    log.flush()
    monkeypatch.setattr(audit_tasks, "get_session", sessions)

    assert audit_tasks.verify_decision_chain() == {"ok": True, "checked": 2, "problems": []}
