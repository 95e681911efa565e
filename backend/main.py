import io
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance import (
    ensure_person,
    entry_exists,
    exit_exists,
    list_records,
    record_entry,
    record_exit,
)
from database import AttendanceRecord, Company, Person, get_db, init_db
from errors import ConflictError, NotFoundError
from logger_helper import create_logging_middleware, setup_logging

logger = logging.getLogger("attendance.api")


# Request/Response Models
class EntryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    person_id: int = Field(alias="personId")
    company_id: int = Field(alias="companyId")
    timestamp: datetime
    location: Optional[str] = None
    auth_result: Optional[str] = Field(default=None, alias="authResult")


class ExitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    person_id: int = Field(alias="personId")
    company_id: int = Field(alias="companyId")
    timestamp: datetime


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup."""
    setup_logging()
    init_db()
    logger.info("Database initialized")
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="Face Attendance",
    description="Entry/exit attendance backed by client-side face recognition",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

create_logging_middleware(app, logging.getLogger("request_performance"))


def serialize_record(record: AttendanceRecord) -> dict:
    return {
        "id": record.id,
        "personId": record.person_id,
        "companyId": record.company_id,
        "day": record.attendance_day.isoformat(),
        "entryTime": record.entry_time.isoformat(),
        "exitTime": record.exit_time.isoformat() if record.exit_time else None,
        "location": record.location,
        "authResult": record.auth_result,
    }


def get_company(db: Session, company_id: int) -> Company:
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise HTTPException(status_code=404, detail=f"Company {company_id} not found")
    return company


@app.get("/health")
async def health_check():
    return {"status": "running"}


# Companies & People

@app.get("/companies")
def list_companies(db: Session = Depends(get_db)):
    companies = db.query(Company).order_by(Company.id).all()
    return [{"id": c.id, "name": c.name} for c in companies]


@app.post("/companies")
def add_company(name: str = Form(...), db: Session = Depends(get_db)):
    """Create a company."""
    try:
        existing = db.query(Company).filter(Company.name == name).first()
        if existing:
            raise HTTPException(status_code=400, detail=f"Company {name} already exists")

        company = Company(name=name)
        db.add(company)
        db.commit()
        db.refresh(company)
        return {"id": company.id, "name": company.name}

    except HTTPException:
        raise
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"Company {name} already exists")
    except Exception as e:
        db.rollback()
        logger.exception("Failed to add company")
        raise HTTPException(status_code=500, detail=f"Failed to add company: {str(e)}")


@app.post("/enroll")
def enroll(
    name: str = Form(...),
    national_id: str = Form(..., alias="nationalId"),
    title: str = Form(""),
    company_id: int = Form(..., alias="companyId"),
    photo: UploadFile = File(...),
    db: Session = Depends(get_db)
):
    """Enroll a person with an enrollment photo."""
    contents = photo.file.read()
    try:
        get_company(db, company_id)

        existing = db.query(Person).filter(
            Person.national_id == national_id,
            Person.company_id == company_id
        ).first()
        if existing:
            raise HTTPException(status_code=400, detail="A person with this national id is already enrolled for this company")

        try:
            image = Image.open(io.BytesIO(contents))
            image.verify()
        except (UnidentifiedImageError, OSError):
            raise HTTPException(status_code=422, detail="Invalid image format")

        person = Person(
            name=name,
            national_id=national_id,
            title=title,
            photo=contents,
            photo_content_type=Image.MIME.get(image.format, "image/jpeg"),
            company_id=company_id,
            created_at=datetime.now()
        )
        db.add(person)
        db.commit()
        db.refresh(person)

        logger.info(f"Enrolled {person.name} (id={person.id}) in company {company_id}")
        return {
            "message": "Person enrolled successfully",
            "personId": person.id,
            "name": person.name
        }

    except HTTPException:
        raise
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="A person with this national id is already enrolled for this company")
    except Exception as e:
        db.rollback()
        logger.exception("Failed to enroll person")
        raise HTTPException(status_code=500, detail=f"Failed to enroll person: {str(e)}")


@app.get("/people")
def list_people(company_id: int = Query(..., alias="companyId"), db: Session = Depends(get_db)):
    """List people enrolled in a company, without their photos."""
    get_company(db, company_id)
    people = db.query(Person).filter(Person.company_id == company_id).order_by(Person.id).all()
    return [
        {
            "id": p.id,
            "name": p.name,
            "nationalId": p.national_id,
            "title": p.title,
            "createdAt": p.created_at.isoformat()
        }
        for p in people
    ]


@app.get("/roster")
def get_roster(company_id: int = Query(..., alias="companyId"), db: Session = Depends(get_db)):
    """Labels of everyone enrolled in a company."""
    get_company(db, company_id)
    rows = db.query(Person.name).filter(Person.company_id == company_id).order_by(Person.id).all()
    labels = [row.name for row in rows]
    return {"labels": labels, "totalUsers": len(labels)}


@app.get("/enrollment-photo")
def get_enrollment_photo(
    label: str,
    company_id: int = Query(..., alias="companyId"),
    db: Session = Depends(get_db)
):
    person = db.query(Person).filter(
        Person.name == label,
        Person.company_id == company_id
    ).order_by(Person.id).first()
    if not person:
        raise HTTPException(status_code=404, detail="Image not found")
    return Response(content=person.photo, media_type=person.photo_content_type)


@app.get("/person-id")
def get_person_id(
    label: str,
    company_id: int = Query(..., alias="companyId"),
    db: Session = Depends(get_db)
):
    person = db.query(Person.id).filter(
        Person.name == label,
        Person.company_id == company_id
    ).order_by(Person.id).first()
    if not person:
        raise HTTPException(status_code=404, detail="Person not found")
    return {"id": person.id}


# Attendance

@app.get("/attendance/entry-exists")
def check_entry(
    person_id: int = Query(..., alias="personId"),
    company_id: int = Query(..., alias="companyId"),
    day: Optional[date] = None,
    db: Session = Depends(get_db)
):
    return {"exists": entry_exists(db, person_id, company_id, day or date.today())}


@app.get("/attendance/exit-exists")
def check_exit(
    person_id: int = Query(..., alias="personId"),
    company_id: int = Query(..., alias="companyId"),
    day: Optional[date] = None,
    db: Session = Depends(get_db)
):
    return {"exists": exit_exists(db, person_id, company_id, day or date.today())}


@app.post("/attendance/entry")
def register_entry(request: EntryRequest, db: Session = Depends(get_db)):
    """Record the first entry of the day."""
    try:
        ensure_person(db, request.person_id, request.company_id)
        record = record_entry(
            db,
            request.person_id,
            request.company_id,
            request.timestamp,
            location=request.location,
            auth_result=request.auth_result
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError:
        raise HTTPException(status_code=409, detail="An entry is already recorded for this person today")
    except Exception as e:
        db.rollback()
        logger.exception("Failed to record entry")
        raise HTTPException(status_code=500, detail=f"Failed to record entry: {str(e)}")

    return {"message": "Entry recorded successfully", "record": serialize_record(record)}


@app.post("/attendance/exit")
def register_exit(request: ExitRequest, db: Session = Depends(get_db)):
    """Record the exit on today's open entry."""
    try:
        record = record_exit(db, request.person_id, request.company_id, request.timestamp)
    except ConflictError:
        raise HTTPException(status_code=409, detail="No open entry found to record the exit")
    except Exception as e:
        db.rollback()
        logger.exception("Failed to record exit")
        raise HTTPException(status_code=500, detail=f"Failed to record exit: {str(e)}")

    return {"message": "Exit recorded successfully", "record": serialize_record(record)}


@app.get("/attendance")
def get_attendance(
    company_id: int = Query(..., alias="companyId"),
    day: Optional[date] = None,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """List recent attendance records of a company."""
    get_company(db, company_id)
    records = list_records(db, company_id, day=day, limit=limit)
    return {"attendance": [serialize_record(r) for r in records]}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
