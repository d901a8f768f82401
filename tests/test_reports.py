from reports import active_restrictions, student_history, violation_watchlist
from schemas import DisciplineRecord, Restriction


def record(name, grade, date, kind="Uniform", rid=None):
    return DisciplineRecord(
        id=rid or f"{name}-{date}-{kind}", student_name=name, grade=grade, date=date,
        infraction_type=kind, notes="", entered_by="teacher@x.com",
    )


def restriction(name="Senora L", cls="3", section="A", start="2026-10-01", end="2026-10-31"):
    return Restriction(
        id=f"r-{name}", student_name=name, student_class=cls, student_section=section,
        start_date=start, end_date=end, reason="Repeated lateness", assigned_by="head@x.com",
    )


def test_active_restrictions_include_both_ends():
    r = restriction(start="2026-10-01", end="2026-10-31")
    assert active_restrictions([r], "2026-10-01") == [r]
    assert active_restrictions([r], "2026-10-31") == [r]
    assert active_restrictions([r], "2026-09-30") == []
    assert active_restrictions([r], "2026-11-01") == []


def test_watchlist_groups_by_name_and_grade():
    records = [
        record("Senora L", "3A", "2026-10-01", "Late Comer"),
        record("Senora L", "3A", "2026-10-05", "Late Comer"),
        record("Senora L", "3A", "2026-10-09", "Uniform"),
        record("Senora L", "4B", "2026-10-02"),
        record("Aditya Kumar", "4B", "2026-10-03", "ID Card"),
    ]
    entries = violation_watchlist(records, [restriction()], threshold=3, on="2026-10-17")

    top = entries[0]
    assert (top.student_name, top.grade, top.count) == ("Senora L", "3A", 3)
    assert top.by_type == {"Late Comer": 2, "Uniform": 1}
    assert top.last_date == "2026-10-09"
    assert top.flagged and top.restricted

    rest = [(e.student_name, e.grade, e.flagged, e.restricted) for e in entries[1:]]
    assert rest == [("Aditya Kumar", "4B", False, False), ("Senora L", "4B", False, False)]


def test_watchlist_ignores_expired_restrictions_and_filters_flagged():
    records = [record("Senora L", "3A", "2026-10-01", rid=str(i)) for i in range(3)]
    records.append(record("Aditya Kumar", "4B", "2026-10-03"))
    expired = restriction(start="2026-01-01", end="2026-01-31")

    entries = violation_watchlist(records, [expired], threshold=3, on="2026-10-17", flagged_only=True)
    assert len(entries) == 1
    assert entries[0].flagged and not entries[0].restricted


def test_student_history_is_newest_first():
    records = [
        record("Senora L", "3A", "2026-10-01"),
        record("Aditya Kumar", "4B", "2026-10-03"),
        record("Senora L", "3A", "2026-10-05"),
    ]
    assert [r.date for r in student_history(records, "Senora L")] == ["2026-10-05", "2026-10-01"]
    assert student_history(records, "Senora L", grade="4B") == []
