from pydantic import BaseModel
from typing import Optional
from datetime import date


class PatientCreate(BaseModel):
    name: str
    bed_number: Optional[str] = None
    residency_status: str = "在住"
    is_hospitalized: bool = False


class PatientUpdate(BaseModel):
    name: Optional[str] = None
    bed_number: Optional[str] = None
    residency_status: Optional[str] = None
    is_hospitalized: Optional[bool] = None


class PatientResponse(BaseModel):
    id: int
    name: str
    bed_number: Optional[str] = None
    residency_status: str
    is_hospitalized: bool = False

    class Config:
        from_attributes = True


class EpisodeCreate(BaseModel):
    episode_type: str = "入院"
    start_date: date
    end_date: Optional[date] = None
    notes: Optional[str] = None


class EpisodeResponse(BaseModel):
    id: int
    patient_id: int
    episode_type: str
    start_date: date
    end_date: Optional[date] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class HealthRecordCreate(BaseModel):
    record_date: date
    record_time: str
    record_type: str = "生命表徵"
    systolic: Optional[float] = None
    diastolic: Optional[float] = None
    pulse: Optional[float] = None
    temperature: Optional[float] = None
    spo2: Optional[float] = None
    respiratory_rate: Optional[float] = None
    blood_glucose: Optional[float] = None
    weight: Optional[float] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None


class HealthRecordResponse(HealthRecordCreate):
    id: int
    patient_id: int

    class Config:
        from_attributes = True
