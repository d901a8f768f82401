"""
Read-only views derived from the tracker collections.

Discipline records carry the student's name and grade as plain strings, so
students are matched by name and class/section rather than by id.
"""
from typing import Dict, List, Optional, Tuple

from schemas import DisciplineRecord, Restriction, WatchlistEntry


def is_active(restriction: Restriction, on: str) -> bool:
    return restriction.start_date <= on <= restriction.end_date


def active_restrictions(restrictions: List[Restriction], on: str) -> List[Restriction]:
    return [r for r in restrictions if is_active(r, on)]


def _restricted(name: str, grade: str, restrictions: List[Restriction]) -> bool:
    for r in restrictions:
        if r.student_name == name and f"{r.student_class}{r.student_section}" == grade:
            return True
    return False


def violation_watchlist(
    records: List[DisciplineRecord],
    restrictions: List[Restriction],
    threshold: int,
    on: str,
    flagged_only: bool = False,
) -> List[WatchlistEntry]:
    groups: Dict[Tuple[str, str], List[DisciplineRecord]] = {}
    for rec in records:
        groups.setdefault((rec.student_name, rec.grade), []).append(rec)

    active = active_restrictions(restrictions, on)
    entries = []
    for (name, grade), recs in groups.items():
        by_type: Dict[str, int] = {}
        for rec in recs:
            by_type[rec.infraction_type] = by_type.get(rec.infraction_type, 0) + 1
        entries.append(WatchlistEntry(
            student_name=name,
            grade=grade,
            count=len(recs),
            by_type=by_type,
            last_date=max(rec.date for rec in recs),
            flagged=len(recs) >= threshold,
            restricted=_restricted(name, grade, active),
        ))
    if flagged_only:
        entries = [e for e in entries if e.flagged]
    entries.sort(key=lambda e: (-e.count, e.student_name))
    return entries


def student_history(records: List[DisciplineRecord], name: str, grade: Optional[str] = None) -> List[DisciplineRecord]:
    found = [r for r in records if r.student_name == name and (grade is None or r.grade == grade)]
    return sorted(found, key=lambda r: r.date, reverse=True)
