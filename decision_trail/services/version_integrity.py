"""Version integrity check.

Checks, per decision:
- version numbers run 1..N with no gaps or repeats;
- ``current_version_id`` / ``current_version_number`` point at version N;
- audit sequence numbers are unique and not ahead of the decision counter.

Returns ``(status, details)`` with status OK or CRITICAL.
"""

from collections import defaultdict

from sqlalchemy import select

from decision_trail.models import db
from decision_trail.models.audit import AuditLogEntry
from decision_trail.models.decision import Decision, DecisionVersion


def run(decision_id: str | None = None) -> tuple[str, dict]:
    problems: list[dict] = []

    decisions_stmt = select(Decision.id, Decision.current_version_id,
                            Decision.current_version_number, Decision.audit_sequence)
    versions_stmt = select(DecisionVersion.decision_id, DecisionVersion.id,
                           DecisionVersion.version_number)
    audit_stmt = select(AuditLogEntry.decision_id, AuditLogEntry.sequence)
    if decision_id:
        decisions_stmt = decisions_stmt.where(Decision.id == decision_id)
        versions_stmt = versions_stmt.where(DecisionVersion.decision_id == decision_id)
        audit_stmt = audit_stmt.where(AuditLogEntry.decision_id == decision_id)

    versions = defaultdict(list)
    for d_id, v_id, number in db.session.execute(versions_stmt):
        versions[d_id].append((number, v_id))
    sequences = defaultdict(list)
    for d_id, seq in db.session.execute(audit_stmt):
        sequences[d_id].append(seq)

    checked = 0
    for d_id, current_id, current_number, audit_seq in db.session.execute(decisions_stmt):
        checked += 1
        rows = sorted(versions.get(d_id, []))
        numbers = [n for n, _ in rows]
        if numbers != list(range(1, len(numbers) + 1)):
            problems.append({"decision_id": d_id, "problem": "version_gap", "numbers": numbers})
        if rows:
            top_number, top_id = rows[-1]
            if current_id != top_id or current_number != top_number:
                problems.append({
                    "decision_id": d_id,
                    "problem": "stale_current_version",
                    "current_version_id": current_id,
                    "expected_version_id": top_id,
                })
        else:
            problems.append({"decision_id": d_id, "problem": "no_versions"})

        seqs = sequences.get(d_id, [])
        if len(seqs) != len(set(seqs)) or (seqs and max(seqs) > (audit_seq or 0)):
            problems.append({"decision_id": d_id, "problem": "audit_sequence", "max": max(seqs)})

    status = "CRITICAL" if problems else "OK"
    return status, {"decisions_checked": checked, "problems": problems}
