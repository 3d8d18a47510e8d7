from sqlalchemy import Column, Integer, String, ForeignKey, Date, Text, Float
from sqlalchemy.orm import relationship
from app.db.base import Base


class HealthRecord(Base):
    """
    Vital-sign reading (健康記錄).

    One row may carry several measurements; record_type decides which
    family it belongs to (生命表徵 for BP/pulse/temp/SpO2/respiration,
    血糖控制 for glucose, 體重控制 for weight).
    """
    __tablename__ = "health_records"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    record_date = Column(Date, nullable=False)
    record_time = Column(String(8), nullable=False)  # HH:MM
    record_type = Column(String(16), nullable=False, default="生命表徵")
    systolic = Column(Float, nullable=True)
    diastolic = Column(Float, nullable=True)
    pulse = Column(Float, nullable=True)
    temperature = Column(Float, nullable=True)
    spo2 = Column(Float, nullable=True)
    respiratory_rate = Column(Float, nullable=True)
    blood_glucose = Column(Float, nullable=True)
    weight = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    recorded_by = Column(String(128), nullable=True)

    patient = relationship("Patient", backref="health_records")
