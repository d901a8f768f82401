"""Cold-start data used when the local cache has nothing stored yet."""
from typing import List

from schemas import DutyAssignment, Student

DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]

# Duty type -> where it is held
DUTY_POSTS = [
    ("Snack", "Playground"),
    ("Lunch", "Dining Hall"),
    ("Dispersal", "Main Gate"),
]


def default_students() -> List[Student]:
    return [
        Student(id="std-1", name="Senora L", class_name="3", section="A", enrollment_no="SCAK002226"),
        Student(id="std-2", name="Aditya Kumar", class_name="4", section="B", enrollment_no="SCAK002227"),
    ]


def initial_duty_roster() -> List[DutyAssignment]:
    roster = []
    for day in DAYS:
        for duty_type, location in DUTY_POSTS:
            roster.append(DutyAssignment(
                id=f"duty-{day[:3].lower()}-{duty_type.lower()}",
                day=day,
                type=duty_type,
                location=location,
                teacher_name="",
            ))
    return roster
