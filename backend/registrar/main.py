from __future__ import annotations

import dataclasses
import json
import logging
import math
import os
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from itsdangerous import BadSignature, URLSafeSerializer
from passlib.context import CryptContext
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import case, create_engine, func, select
from sqlalchemy.inspection import inspect
from sqlalchemy.orm import Session, sessionmaker

from registrar import grading, repository, scheduling, services
from registrar.models import AuditLog, Base, Course, Enrollment, Evaluation, ScheduleSlot, Student, User


DATABASE_URL = os.environ.get("REGISTRAR_DATABASE_URL", "sqlite:///./registrar.db")
SESSION_SECRET = os.environ.get("REGISTRAR_SESSION_SECRET", "change-me")
LOG_LEVEL = os.environ.get("REGISTRAR_LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.environ.get("REGISTRAR_CORS_ORIGINS", "*").split(",") if o.strip()]
GRADING_ROLES = {"ADMIN", "PROFESSOR"}

serializer = URLSafeSerializer(SESSION_SECRET, salt="registrar")
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
logger = logging.getLogger(__name__)

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, future=True, connect_args=connect_args)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

app = FastAPI(title="University Registrar - Grades and Timetable")
app.add_middleware(CORSMiddleware, allow_origins=CORS_ORIGINS, allow_credentials=True, allow_methods=["*"], allow_headers=["*"])


class LoginIn(BaseModel):
    username: str
    password: str


class StudentIn(BaseModel):
    matricule: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    first_name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    level: Optional[str] = None


class CourseIn(BaseModel):
    code: str = Field(min_length=1)
    name: str = Field(min_length=1)
    credits: int = Field(default=0, ge=0)
    semester: Optional[str] = None


class EnrollmentIn(BaseModel):
    student_id: str
    course_id: str


class EvaluationIn(BaseModel):
    student_id: str
    course_id: str
    evaluation_type: str = Field(min_length=1)
    score: float = Field(ge=grading.SCORE_MIN, le=grading.SCORE_MAX)
    weight: float = Field(default=1.0, gt=0)
    evaluation_date: Optional[date] = None
    comment: Optional[str] = None


class ScheduleSlotIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    course_id: str
    day_of_week: scheduling.Day
    start_time: str = Field(pattern=scheduling.TIME_PATTERN)
    end_time: str = Field(pattern=scheduling.TIME_PATTERN)
    room: str = Field(min_length=1)
    session_type: scheduling.SessionType = "lecture"


def configure_logging() -> None:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # unknown or malformed hash format
        logger.warning("password_hash_unreadable")
        return False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user(session_token: str = Query(...), db: Session = Depends(get_db)) -> User:
    try:
        payload = serializer.loads(session_token)
    except BadSignature as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc
    user = db.get(User, payload["user_id"])
    if not user:
        raise HTTPException(status_code=401, detail="Invalid user")
    return user


def require_grading(user: User = Depends(current_user)) -> User:
    if user.role not in GRADING_ROLES:
        raise HTTPException(status_code=403, detail="ADMIN or PROFESSOR role required")
    return user


def require_admin(user: User = Depends(current_user)) -> User:
    if user.role != "ADMIN":
        raise HTTPException(status_code=403, detail="ADMIN role required")
    return user


def write_audit(db: Session, user: User, action: str, entity: str, entity_id: str, payload: Optional[str] = None) -> None:
    db.add(AuditLog(actor_user_id=user.id, action=action, entity_type=entity, entity_id=entity_id, payload=payload))
    db.commit()


def serialize(instance):
    return {c.key: getattr(instance, c.key) for c in inspect(instance).mapper.column_attrs}


def unwrap(outcome: services.Outcome):
    if isinstance(outcome, services.Ok):
        return outcome.value
    if isinstance(outcome, services.NotFound):
        raise HTTPException(status_code=404, detail=f"{outcome.entity} not found")
    if isinstance(outcome, services.Conflict):
        raise HTTPException(
            status_code=409,
            detail={"error": outcome.reason, "conflicts": [dataclasses.asdict(s) for s in outcome.conflicts]},
        )
    raise HTTPException(status_code=400, detail=outcome.reason)


def paginate(db: Session, stmt, page: int, limit: int) -> tuple[list, dict]:
    total = db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    rows = db.execute(stmt.limit(limit).offset((page - 1) * limit)).all()
    return rows, {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)}


def day_order():
    return case({d: i for i, d in enumerate(scheduling.DAYS)}, value=ScheduleSlot.day_of_week, else_=len(scheduling.DAYS))


def evaluation_payload(ev: Evaluation, student: Student, course: Course) -> dict:
    out = serialize(ev)
    out.update(
        {
            "student_name": f"{student.first_name} {student.last_name}",
            "student_matricule": student.matricule,
            "course_name": course.name,
            "course_code": course.code,
            "mention": grading.mention(ev.score),
        }
    )
    return out


def evaluation_detail(db: Session, evaluation_id: str) -> dict:
    row = db.execute(
        select(Evaluation, Student, Course)
        .join(Student, Evaluation.student_id == Student.id)
        .join(Course, Evaluation.course_id == Course.id)
        .where(Evaluation.id == evaluation_id)
    ).first()
    if not row:
        raise HTTPException(status_code=404, detail="Evaluation not found")
    return evaluation_payload(*row)


def slot_select():
    return select(ScheduleSlot, Course).join(Course, ScheduleSlot.course_id == Course.id)


def slot_payload(slot: ScheduleSlot, course: Course) -> dict:
    out = serialize(slot)
    out.update({"course_name": course.name, "course_code": course.code})
    return out


def slot_detail(db: Session, slot_id: str) -> dict:
    row = db.execute(slot_select().where(ScheduleSlot.id == slot_id)).first()
    if not row:
        raise HTTPException(status_code=404, detail="Schedule slot not found")
    return slot_payload(*row)


DEMO_STUDENTS = [
    ("ETU001", "Martin", "Claire", "claire.martin@example.edu", "L3"),
    ("ETU002", "Bernard", "Hugo", "hugo.bernard@example.edu", "L2"),
    ("ETU003", "Diallo", "Awa", "awa.diallo@example.edu", "M1"),
]
DEMO_COURSES = [
    ("MATH101", "Linear Algebra", 5, "S1"),
    ("INFO201", "Databases", 4, "S1"),
    ("PHYS110", "Mechanics", 3, "S2"),
]
DEMO_EVALUATIONS = [
    ("ETU001", "MATH101", "midterm", 12.0, 1.0),
    ("ETU001", "MATH101", "final", 15.5, 2.0),
    ("ETU001", "INFO201", "project", 17.0, 1.0),
    ("ETU002", "MATH101", "midterm", 8.5, 1.0),
    ("ETU002", "PHYS110", "lab", 13.0, 0.5),
    ("ETU003", "INFO201", "final", 18.0, 3.0),
]
DEMO_SLOTS = [
    ("MATH101", "Monday", "08:30", "10:30", "A101", "lecture"),
    ("MATH101", "Wednesday", "14:00", "16:00", "B204", "tutorial"),
    ("INFO201", "Monday", "10:30", "12:30", "A101", "lecture"),
    ("INFO201", "Thursday", "09:00", "12:00", "LAB-3", "lab"),
    ("PHYS110", "Friday", "13:00", "15:00", "A101", "exam"),
]


def seed_demo_data(db: Session) -> dict:
    created = {"students": 0, "courses": 0, "enrollments": 0, "evaluations": 0, "slots": 0}

    students = {}
    for matricule, last, first, email, level in DEMO_STUDENTS:
        s = db.scalar(select(Student).where(Student.matricule == matricule))
        if not s:
            s = Student(matricule=matricule, last_name=last, first_name=first, email=email, level=level)
            db.add(s)
            db.flush()
            created["students"] += 1
        students[matricule] = s

    courses = {}
    for code, name, credits, semester in DEMO_COURSES:
        c = db.scalar(select(Course).where(Course.code == code))
        if not c:
            c = Course(code=code, name=name, credits=credits, semester=semester)
            db.add(c)
            db.flush()
            created["courses"] += 1
        courses[code] = c

    for matricule, code, ev_type, score, weight in DEMO_EVALUATIONS:
        s, c = students[matricule], courses[code]
        if not repository.is_enrolled(db, s.id, c.id):
            db.add(Enrollment(student_id=s.id, course_id=c.id))
            db.flush()
            created["enrollments"] += 1
        exists = db.scalar(
            select(Evaluation.id).where(
                Evaluation.student_id == s.id, Evaluation.course_id == c.id, Evaluation.evaluation_type == ev_type
            )
        )
        if not exists:
            db.add(Evaluation(student_id=s.id, course_id=c.id, evaluation_type=ev_type, score=score, weight=weight))
            created["evaluations"] += 1

    db.commit()

    for code, day, start, end, room, session_type in DEMO_SLOTS:
        data = {"course_id": courses[code].id, "day_of_week": day, "start_time": start, "end_time": end, "room": room, "session_type": session_type}
        if isinstance(services.create_slot(db, data), services.Ok):
            created["slots"] += 1

    return created


@app.on_event("startup")
def startup():
    configure_logging()
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        if not db.scalar(select(User).where(User.username == "registrar_admin")):
            db.add(User(username="registrar_admin", password_hash=hash_password("registrar_admin"), role="ADMIN"))
            db.add(User(username="professor_user", password_hash=hash_password("professor_user"), role="PROFESSOR"))
        db.commit()
    logger.info("startup_complete database=%s", engine.url.render_as_string(hide_password=True))


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/demo/load-data")
def load_demo_data(db: Session = Depends(get_db), user: User = Depends(require_admin)):
    summary = seed_demo_data(db)
    write_audit(db, user, "SEED_DEMO_DATA", "System", "demo", json.dumps(summary))
    return {"status": "ok", "summary": summary}


@app.post("/auth/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = db.scalar(select(User).where(User.username == payload.username))
    if not user or not verify_password(payload.password, user.password_hash):
        logger.info("login_failed username=%s", payload.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {"session_token": serializer.dumps({"user_id": user.id}), "role": user.role}


@app.post("/students", status_code=201)
def create_student(payload: StudentIn, db: Session = Depends(get_db), user: User = Depends(require_admin)):
    if db.scalar(select(Student.id).where((Student.matricule == payload.matricule) | (Student.email == payload.email))):
        raise HTTPException(status_code=409, detail="Matricule or email already in use")
    s = Student(**payload.model_dump())
    db.add(s)
    db.commit()
    db.refresh(s)
    write_audit(db, user, "CREATE", "Student", s.id, str(payload.model_dump()))
    return serialize(s)


@app.get("/students")
def list_students(
    q: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _: User = Depends(current_user),
):
    stmt = select(Student)
    if q:
        stmt = stmt.where((Student.last_name.contains(q)) | (Student.first_name.contains(q)) | (Student.matricule.contains(q)))
    stmt = stmt.order_by(Student.last_name.asc(), Student.first_name.asc()).limit(limit).offset(offset)
    return [serialize(s) for s in db.scalars(stmt).all()]


@app.post("/courses", status_code=201)
def create_course(payload: CourseIn, db: Session = Depends(get_db), user: User = Depends(require_admin)):
    if db.scalar(select(Course.id).where(Course.code == payload.code)):
        raise HTTPException(status_code=409, detail="Course code already in use")
    c = Course(**payload.model_dump())
    db.add(c)
    db.commit()
    db.refresh(c)
    write_audit(db, user, "CREATE", "Course", c.id, str(payload.model_dump()))
    return serialize(c)


@app.get("/courses")
def list_courses(db: Session = Depends(get_db), _: User = Depends(current_user)):
    return [serialize(c) for c in db.scalars(select(Course).order_by(Course.code.asc())).all()]


@app.post("/enrollments", status_code=201)
def create_enrollment(payload: EnrollmentIn, db: Session = Depends(get_db), user: User = Depends(require_admin)):
    if not db.get(Student, payload.student_id):
        raise HTTPException(status_code=404, detail="Student not found")
    if not db.get(Course, payload.course_id):
        raise HTTPException(status_code=404, detail="Course not found")
    if repository.is_enrolled(db, payload.student_id, payload.course_id):
        raise HTTPException(status_code=409, detail="Student already enrolled in this course")
    obj = Enrollment(**payload.model_dump())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    write_audit(db, user, "CREATE", "Enrollment", obj.id, str(payload.model_dump()))
    return serialize(obj)


@app.get("/enrollments")
def list_enrollments(
    student_id: Optional[str] = None,
    course_id: Optional[str] = None,
    db: Session = Depends(get_db),
    _: User = Depends(current_user),
):
    stmt = select(Enrollment)
    if student_id:
        stmt = stmt.where(Enrollment.student_id == student_id)
    if course_id:
        stmt = stmt.where(Enrollment.course_id == course_id)
    return [serialize(e) for e in db.scalars(stmt.order_by(Enrollment.enrolled_at.asc())).all()]


@app.get("/evaluations")
def list_evaluations(
    student_id: Optional[str] = None,
    course_id: Optional[str] = None,
    evaluation_type: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    _: User = Depends(current_user),
):
    stmt = (
        select(Evaluation, Student, Course)
        .join(Student, Evaluation.student_id == Student.id)
        .join(Course, Evaluation.course_id == Course.id)
    )
    if student_id:
        stmt = stmt.where(Evaluation.student_id == student_id)
    if course_id:
        stmt = stmt.where(Evaluation.course_id == course_id)
    if evaluation_type:
        stmt = stmt.where(Evaluation.evaluation_type == evaluation_type)
    stmt = stmt.order_by(Evaluation.evaluation_date.desc(), Evaluation.created_at.desc())
    rows, pagination = paginate(db, stmt, page, limit)
    return {"evaluations": [evaluation_payload(*r) for r in rows], "pagination": pagination}


@app.get("/evaluations/stats/overview")
def evaluation_stats(db: Session = Depends(get_db), _: User = Depends(current_user)):
    return {"stats": grading.grade_statistics(repository.all_scores(db))}


@app.get("/evaluations/average/{student_id}/{course_id}")
def course_average(student_id: str, course_id: str, db: Session = Depends(get_db), _: User = Depends(current_user)):
    result = unwrap(services.student_course_average(db, student_id, course_id))
    result["evaluations"] = [dataclasses.asdict(e) for e in result["evaluations"]]
    if result["average"] is None:
        result["message"] = "No evaluations recorded for this student in this course"
    return result


@app.get("/evaluations/overall/{student_id}")
def overall_average(student_id: str, db: Session = Depends(get_db), _: User = Depends(current_user)):
    result = unwrap(services.student_overall_average(db, student_id))
    result["courses"] = [dataclasses.asdict(r) for r in result["courses"]]
    if result["overall_average"] is None:
        result["message"] = "No evaluations recorded for this student"
    return result


@app.get("/evaluations/{evaluation_id}")
def get_evaluation(evaluation_id: str, db: Session = Depends(get_db), _: User = Depends(current_user)):
    return {"evaluation": evaluation_detail(db, evaluation_id)}


@app.post("/evaluations", status_code=201)
def create_evaluation(payload: EvaluationIn, db: Session = Depends(get_db), user: User = Depends(require_grading)):
    ev = unwrap(services.submit_evaluation(db, payload.model_dump()))
    write_audit(db, user, "CREATE", "Evaluation", ev.id, str(payload.model_dump()))
    return {"evaluation": evaluation_detail(db, ev.id)}


@app.put("/evaluations/{evaluation_id}")
def update_evaluation(evaluation_id: str, payload: EvaluationIn, db: Session = Depends(get_db), user: User = Depends(require_grading)):
    ev = unwrap(services.update_evaluation(db, evaluation_id, payload.model_dump()))
    write_audit(db, user, "UPDATE", "Evaluation", ev.id, str(payload.model_dump()))
    return {"evaluation": evaluation_detail(db, ev.id)}


@app.delete("/evaluations/{evaluation_id}")
def delete_evaluation(evaluation_id: str, db: Session = Depends(get_db), user: User = Depends(require_grading)):
    unwrap(services.delete_evaluation(db, evaluation_id))
    write_audit(db, user, "DELETE", "Evaluation", evaluation_id)
    return {"status": "deleted"}


@app.get("/schedules")
def list_schedules(
    course_id: Optional[str] = None,
    day: Optional[scheduling.Day] = None,
    room: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    _: User = Depends(current_user),
):
    stmt = slot_select()
    if course_id:
        stmt = stmt.where(ScheduleSlot.course_id == course_id)
    if day:
        stmt = stmt.where(ScheduleSlot.day_of_week == day)
    if room:
        stmt = stmt.where(ScheduleSlot.room.contains(room))
    stmt = stmt.order_by(day_order(), ScheduleSlot.start_time.asc())
    rows, pagination = paginate(db, stmt, page, limit)
    return {"slots": [slot_payload(*r) for r in rows], "pagination": pagination}


@app.get("/schedules/day/{day}")
def schedules_for_day(day: scheduling.Day, db: Session = Depends(get_db), _: User = Depends(current_user)):
    stmt = slot_select().where(ScheduleSlot.day_of_week == day).order_by(ScheduleSlot.start_time.asc())
    return {"slots": [slot_payload(*r) for r in db.execute(stmt).all()]}


@app.get("/schedules/course/{course_id}")
def schedules_for_course(course_id: str, db: Session = Depends(get_db), _: User = Depends(current_user)):
    stmt = slot_select().where(ScheduleSlot.course_id == course_id).order_by(day_order(), ScheduleSlot.start_time.asc())
    return {"slots": [slot_payload(*r) for r in db.execute(stmt).all()]}


@app.get("/schedules/conflicts/check")
def check_conflicts(
    room: str,
    day: scheduling.Day,
    start_time: str = Query(..., pattern=scheduling.TIME_PATTERN),
    end_time: str = Query(..., pattern=scheduling.TIME_PATTERN),
    exclude_id: Optional[str] = None,
    db: Session = Depends(get_db),
    _: User = Depends(current_user),
):
    data = {"room": room, "day_of_week": day, "start_time": start_time, "end_time": end_time}
    conflicts = unwrap(services.check_slot(db, data, exclude_id=exclude_id))
    return {"conflicts": [dataclasses.asdict(s) for s in conflicts], "has_conflict": bool(conflicts)}


@app.get("/schedules/stats/overview")
def schedule_stats(db: Session = Depends(get_db), _: User = Depends(current_user)):
    return {"stats": scheduling.slot_statistics(repository.all_slots(db))}


@app.get("/schedules/{slot_id}")
def get_schedule(slot_id: str, db: Session = Depends(get_db), _: User = Depends(current_user)):
    return {"slot": slot_detail(db, slot_id)}


@app.post("/schedules", status_code=201)
def create_schedule(payload: ScheduleSlotIn, db: Session = Depends(get_db), user: User = Depends(require_grading)):
    slot = unwrap(services.create_slot(db, payload.model_dump()))
    write_audit(db, user, "CREATE", "ScheduleSlot", slot.id, str(payload.model_dump()))
    return {"slot": slot_detail(db, slot.id)}


@app.put("/schedules/{slot_id}")
def update_schedule(slot_id: str, payload: ScheduleSlotIn, db: Session = Depends(get_db), user: User = Depends(require_grading)):
    slot = unwrap(services.update_slot(db, slot_id, payload.model_dump()))
    write_audit(db, user, "UPDATE", "ScheduleSlot", slot.id, str(payload.model_dump()))
    return {"slot": slot_detail(db, slot.id)}


@app.delete("/schedules/{slot_id}")
def delete_schedule(slot_id: str, db: Session = Depends(get_db), user: User = Depends(require_grading)):
    unwrap(services.delete_slot(db, slot_id))
    write_audit(db, user, "DELETE", "ScheduleSlot", slot_id)
    return {"status": "deleted"}
