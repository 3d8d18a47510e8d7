from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, Date, Text
from sqlalchemy.orm import relationship
from app.db.base import Base


class Patient(Base):
    """Resident (院友). Only 在住 residents receive daily medication work items."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    bed_number = Column(String(32), nullable=True)
    residency_status = Column(String(16), nullable=False, default="在住")  # 在住 | 待入住 | 已退住
    is_hospitalized = Column(Boolean, default=False)


class HospitalEpisode(Base):
    """
    Period a resident is away from the home: hospital admission (入院) or
    home leave (回家). An episode with no end_date is still open.
    """
    __tablename__ = "hospital_episodes"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    episode_type = Column(String(16), nullable=False, default="入院")
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    patient = relationship("Patient", backref="episodes")
