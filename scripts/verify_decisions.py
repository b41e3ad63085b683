#!/usr/bin/env python3
"""
Verify MedGate decision-log hashes for tamper detection.

Usage:
    python scripts/verify_decisions.py --subject-id doc-1
"""
from __future__ import annotations

import argparse
import os
import sys

from medgate.app.infra.db import build_engine, session_factory
from medgate.app.services.audit import AuditFilter, AuditLog, SqlAuditSink


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify decision-log chain integrity.")
    parser.add_argument(
        "--subject-id",
        help="Only print records of this subject (the whole chain is always verified)",
    )
    parser.add_argument(
        "--database-url",
        default=os.getenv("DATABASE_URL", "sqlite:///./medgate.db"),
        help="Database URL (SQLAlchemy compatible)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    sessions = session_factory(build_engine(args.database_url))
    log = AuditLog(SqlAuditSink(sessions))

    report = log.verify()
    if report.checked == 0:
        print("No decision records found for verification.")
        return 0

    if args.subject_id:
        for record in log.query(AuditFilter(subject_id=args.subject_id)):
            print(
                f"{record.created_at.isoformat()} {record.outcome.value:5} "
                f"{record.verb} {record.resource_type} {record.resource_id or '-'}: {record.reason}"
            )

    for problem in report.problems:
        print(f"[WARN] {problem}", file=sys.stderr)
    if report.ok:
        print(f"Verified {report.checked} decision records; chain intact")
        return 0
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
