"""
Record Schemas for the School Discipline Tracker (Pydantic models)

Each collection model maps to one remote collection and one local cache key.
Wire field names are camelCase; attribute names are snake_case.

Collections:
- students
- discipline_records
- fitness_records
- restrictions
- duty_roster
"""

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_doc(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class InfractionType(str, Enum):
    HAIR_CUT = "Hair Cut"
    UNIFORM = "Uniform"
    LATE_COMER = "Late Comer"
    ID_CARD = "ID Card"
    OTHER = "Other"


DutyDay = Literal["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
DutyType = Literal["Snack", "Lunch", "Dispersal"]


# Roster
class Student(Record):
    id: str
    name: str
    class_name: str = Field(..., alias="class")
    section: str
    enrollment_no: Optional[str] = None


# Discipline
class NewDisciplineRecord(Record):
    student_name: str
    grade: str = Field(..., description="Class and section, e.g. 3A")
    infraction_type: InfractionType
    notes: str = ""


class DisciplineRecord(Record):
    id: str
    student_name: str
    grade: str
    date: str = Field(..., description="Calendar day, YYYY-MM-DD")
    # Stored records keep whatever type string they were written with
    infraction_type: str
    notes: str = ""
    entered_by: str
    is_new: Optional[bool] = None


class Restriction(Record):
    id: str
    student_name: str
    student_class: str
    student_section: str
    start_date: str
    end_date: str
    reason: str
    assigned_by: str


# Fitness
class FitnessMetrics(Record):
    height: float
    weight: float
    bmi: float
    speed_50m: float = Field(..., alias="speed50m")
    endurance_600m: float = Field(..., alias="endurance600m")
    strength: float
    flexibility: float
    curls_up: float
    game_skill_1: float = Field(..., alias="gameSkill1")
    game_skill_2: float = Field(..., alias="gameSkill2")
    discipline: float
    total: float
    grade: str
    remark: str


class FitnessRecord(Record):
    roll_no: int
    name: str
    class_name: str = Field(..., alias="class")
    section: str
    baseline: FitnessMetrics
    final: Optional[FitnessMetrics] = None


# Duty roster
class DutyAssignment(Record):
    id: str
    # Stored assignments keep whatever day/type strings they were written with
    day: str
    type: str
    location: str
    teacher_name: str
    phone_number: Optional[str] = None


class DutyAssignmentIn(DutyAssignment):
    day: DutyDay
    type: DutyType

    def to_assignment(self) -> DutyAssignment:
        return DutyAssignment.model_validate(self.to_doc())


class FullRestore(Record):
    students: Optional[List[Student]] = None
    discipline_records: Optional[List[DisciplineRecord]] = None
    fitness_records: Optional[List[FitnessRecord]] = None
    restrictions: Optional[List[Restriction]] = None
    duty_roster: Optional[List[DutyAssignment]] = None


class WatchlistEntry(Record):
    student_name: str
    grade: str
    count: int
    by_type: dict
    last_date: str
    flagged: bool
    restricted: bool


# Session
class LoginRequest(Record):
    identifier: str = Field(..., min_length=1)
    admin_passcode: Optional[str] = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    is_admin: bool = False


class SessionInfo(Record):
    user: Optional[str] = None
    is_admin: bool = False
    cloud_active: bool = False
