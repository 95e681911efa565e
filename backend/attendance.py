"""
Attendance recording with at most one entry and one exit per person and day.

Both writes are single conditional statements: duplicate or concurrent
submissions are resolved by the database, exactly one of them affects a row
and every other one surfaces as ``ConflictError``.
"""
import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import and_, insert, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import ConflictError, NotFoundError
from models import AttendanceRecord, Person

logger = logging.getLogger(__name__)


def wall_clock(timestamp: datetime) -> datetime:
    """Drop tzinfo but keep the attendee's local clock reading as sent."""
    return timestamp.replace(tzinfo=None)


def _same_day(person_id: int, company_id: int, day: date):
    return and_(
        AttendanceRecord.person_id == person_id,
        AttendanceRecord.company_id == company_id,
        AttendanceRecord.attendance_day == day,
    )


def ensure_person(db: Session, person_id: int, company_id: int) -> Person:
    person = db.query(Person).filter(
        Person.id == person_id,
        Person.company_id == company_id
    ).first()
    if person is None:
        raise NotFoundError(f"Person {person_id} is not enrolled in company {company_id}")
    return person


def record_entry(
    db: Session,
    person_id: int,
    company_id: int,
    timestamp: datetime,
    location: Optional[str] = None,
    auth_result: Optional[str] = None,
) -> AttendanceRecord:
    """
    Insert today's entry unless one already exists.

    Raises:
        ConflictError: an entry for this person, company and day exists
    """
    entry_time = wall_clock(timestamp)
    day = entry_time.date()
    columns = AttendanceRecord.__table__.c

    already_entered = select(AttendanceRecord.id).where(
        _same_day(person_id, company_id, day)
    ).correlate(None).exists()

    row = select(
        literal(person_id, columns.person_id.type),
        literal(company_id, columns.company_id.type),
        literal(day, columns.attendance_day.type),
        literal(entry_time, columns.entry_time.type),
        literal(location, columns.location.type),
        literal(auth_result, columns.auth_result.type),
        literal(datetime.now(), columns.created_at.type),
    ).where(~already_entered)

    stmt = insert(AttendanceRecord.__table__).from_select(
        ["person_id", "company_id", "attendance_day", "entry_time", "location", "auth_result", "created_at"],
        row,
    )

    try:
        result = db.execute(stmt)
        db.commit()
    except IntegrityError:
        # Lost the race against a concurrent insert for the same day
        db.rollback()
        raise ConflictError("Entry already recorded for today")

    if result.rowcount == 0:
        raise ConflictError("Entry already recorded for today")

    logger.info(f"Entry recorded: person={person_id} company={company_id} at {entry_time.isoformat()}")
    return db.query(AttendanceRecord).filter(_same_day(person_id, company_id, day)).one()


def record_exit(db: Session, person_id: int, company_id: int, timestamp: datetime) -> AttendanceRecord:
    """
    Set today's exit on an open entry.

    Raises:
        ConflictError: no entry for the day, exit already set, or the exit
            would precede the entry
    """
    exit_time = wall_clock(timestamp)
    day = exit_time.date()

    stmt = (
        update(AttendanceRecord.__table__)
        .where(
            _same_day(person_id, company_id, day),
            AttendanceRecord.exit_time.is_(None),
            AttendanceRecord.entry_time <= exit_time,
        )
        .values(exit_time=exit_time)
    )

    result = db.execute(stmt)
    db.commit()

    if result.rowcount == 0:
        raise ConflictError("No open entry to close for today")

    logger.info(f"Exit recorded: person={person_id} company={company_id} at {exit_time.isoformat()}")
    return db.query(AttendanceRecord).filter(_same_day(person_id, company_id, day)).one()


def entry_exists(db: Session, person_id: int, company_id: int, day: date) -> bool:
    return db.query(AttendanceRecord.id).filter(
        _same_day(person_id, company_id, day)
    ).first() is not None


def exit_exists(db: Session, person_id: int, company_id: int, day: date) -> bool:
    return db.query(AttendanceRecord.id).filter(
        _same_day(person_id, company_id, day),
        AttendanceRecord.exit_time.isnot(None)
    ).first() is not None


def list_records(db: Session, company_id: int, day: Optional[date] = None, limit: int = 50) -> List[AttendanceRecord]:
    """Most recent records of a company, optionally restricted to one day."""
    query = db.query(AttendanceRecord).filter(AttendanceRecord.company_id == company_id)
    if day is not None:
        query = query.filter(AttendanceRecord.attendance_day == day)
    return query.order_by(AttendanceRecord.entry_time.desc()).limit(limit).all()
