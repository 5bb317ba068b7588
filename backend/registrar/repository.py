"""
Store access for the grading and timetable rules.

Rows come back as the plain dataclasses of grading/scheduling so the
rules never touch a Session.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from registrar import grading, scheduling
from registrar.models import Course, Enrollment, Evaluation, RoomDayLock, ScheduleSlot


@dataclass(frozen=True)
class CourseAverageRow:
    course_id: str
    code: str
    name: str
    credits: float
    average: float
    evaluation_count: int


def to_evaluation(row: Evaluation) -> grading.Evaluation:
    return grading.Evaluation(
        score=row.score,
        weight=row.weight,
        evaluation_type=row.evaluation_type,
        date=row.evaluation_date,
        id=row.id,
    )


def to_slot(row: ScheduleSlot) -> scheduling.ScheduleSlot:
    return scheduling.ScheduleSlot(
        room=row.room,
        day_of_week=row.day_of_week,
        start_time=row.start_time,
        end_time=row.end_time,
        session_type=row.session_type,
        id=row.id,
        course_id=row.course_id,
    )


def is_enrolled(db: Session, student_id: str, course_id: str) -> bool:
    stmt = select(Enrollment.id).where(Enrollment.student_id == student_id, Enrollment.course_id == course_id)
    return db.scalar(stmt) is not None


def find_evaluations(db: Session, student_id: str, course_id: str) -> list[grading.Evaluation]:
    stmt = (
        select(Evaluation)
        .where(Evaluation.student_id == student_id, Evaluation.course_id == course_id)
        .order_by(Evaluation.evaluation_date.desc())
    )
    return [to_evaluation(r) for r in db.scalars(stmt).all()]


def find_course_averages(db: Session, student_id: str) -> list[CourseAverageRow]:
    # One weighted mean per course over that course's own evaluations,
    # never an AVG over a joined, unfiltered row set.
    stmt = (
        select(Evaluation, Course)
        .join(Course, Evaluation.course_id == Course.id)
        .where(Evaluation.student_id == student_id)
        .order_by(Course.code.asc())
    )
    grouped: dict[str, tuple[Course, list[grading.Evaluation]]] = {}
    for ev, course in db.execute(stmt).all():
        grouped.setdefault(course.id, (course, []))[1].append(to_evaluation(ev))

    out: list[CourseAverageRow] = []
    for course, evaluations in grouped.values():
        out.append(
            CourseAverageRow(
                course_id=course.id,
                code=course.code,
                name=course.name,
                credits=float(course.credits or 0),
                average=grading.course_average(evaluations),
                evaluation_count=len(evaluations),
            )
        )
    return out


def lock_room_day(db: Session, room: str, day_of_week: str) -> None:
    """
    Take the write lock for one room's day until the transaction ends.

    The UPDATE opens a write transaction (RESERVED lock on SQLite, row lock
    on PostgreSQL), so a second writer for the same room and day waits here
    until the first commits or rolls back. The row is created on first use.
    """
    bump = (
        update(RoomDayLock)
        .where(RoomDayLock.room == room, RoomDayLock.day_of_week == day_of_week)
        .values(version=RoomDayLock.version + 1)
        .execution_options(synchronize_session=False)
    )
    if int(db.execute(bump).rowcount or 0):
        return
    values = {"room": room, "day_of_week": day_of_week, "version": 0}
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        stmt = sqlite.insert(RoomDayLock).values(**values).on_conflict_do_nothing()
    elif dialect == "postgresql":
        stmt = postgresql.insert(RoomDayLock).values(**values).on_conflict_do_nothing()
    else:
        stmt = insert(RoomDayLock).values(**values)
    db.execute(stmt)
    db.execute(bump)


def find_slots(db: Session, room: str, day_of_week: str) -> list[scheduling.ScheduleSlot]:
    stmt = select(ScheduleSlot).where(ScheduleSlot.room == room, ScheduleSlot.day_of_week == day_of_week)
    return [to_slot(r) for r in db.scalars(stmt).all()]


def all_slots(db: Session, course_id: Optional[str] = None) -> list[scheduling.ScheduleSlot]:
    stmt = select(ScheduleSlot)
    if course_id:
        stmt = stmt.where(ScheduleSlot.course_id == course_id)
    return [to_slot(r) for r in db.scalars(stmt).all()]


def all_scores(db: Session) -> list[tuple[str, float]]:
    return [(t, s) for t, s in db.execute(select(Evaluation.evaluation_type, Evaluation.score)).all()]
