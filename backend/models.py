"""
SQLAlchemy models for the attendance system.
"""
from sqlalchemy import Column, Integer, String, Date, DateTime, LargeBinary, ForeignKey, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Company(Base):
    """Company that scopes people and attendance."""
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)


class Person(Base):
    """Enrolled person. ``name`` doubles as the recognition label."""
    __tablename__ = "persons"
    __table_args__ = (
        UniqueConstraint("national_id", "company_id", name="uq_person_national_id_company"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    national_id = Column(String, nullable=False)
    title = Column(String, nullable=True)
    photo = Column(LargeBinary, nullable=False)  # Enrollment photo
    photo_content_type = Column(String, nullable=False, default="image/jpeg")
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False)


class AttendanceRecord(Base):
    """One row per person, company and day; exit is filled in later."""
    __tablename__ = "attendance"
    __table_args__ = (
        UniqueConstraint("person_id", "company_id", "attendance_day", name="uq_attendance_person_company_day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    person_id = Column(Integer, ForeignKey("persons.id"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    attendance_day = Column(Date, nullable=False, index=True)
    entry_time = Column(DateTime, nullable=False)
    exit_time = Column(DateTime, nullable=True)
    location = Column(String, nullable=True)
    auth_result = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False)
