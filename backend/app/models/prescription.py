"""
Prescription: a standing medication order for one resident.

Edited only through the prescription endpoints. The workflow engine reads
prescriptions but never writes them; occurrences already generated are a
snapshot and are not touched when a prescription changes.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, Date, DateTime, Text, Float
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
from app.db.base import Base


class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    medication_name = Column(String(255), nullable=False)
    dosage_amount = Column(String(64), nullable=True)
    dosage_form = Column(String(64), nullable=True)
    administration_route = Column(String(64), nullable=True)  # 口服, 注射, ...

    # Schedule definition
    daily_frequency = Column(Integer, nullable=True)
    frequency_type = Column(String(32), nullable=False, default="daily")
    frequency_value = Column(Integer, nullable=True)  # N for every_x_days / every_x_months
    specific_weekdays = Column(JSON, nullable=True)  # 1=Mon .. 7=Sun
    is_odd_even_day = Column(String(8), nullable=False, default="none")
    medication_time_slots = Column(JSON, nullable=True)  # ["08:00", "13:00"]
    meal_timing = Column(String(32), nullable=True)  # 餐前 / 餐後 / 隨餐
    is_prn = Column(Boolean, default=False)
    preparation_method = Column(String(16), nullable=False, default="immediate")

    # Validity window
    start_date = Column(Date, nullable=False)
    start_time = Column(String(8), nullable=True)
    end_date = Column(Date, nullable=True)
    end_time = Column(String(8), nullable=True)

    status = Column(String(32), nullable=False, default="active")  # active | inactive | pending_change
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient", backref="prescriptions")
    inspection_rules = relationship(
        "InspectionRule",
        back_populates="prescription",
        cascade="all, delete-orphan",
        order_by="InspectionRule.id",
    )


class InspectionRule(Base):
    """Vital-sign precondition checked right before dispensing."""
    __tablename__ = "medication_inspection_rules"

    id = Column(Integer, primary_key=True, index=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    vital_sign_type = Column(String(16), nullable=False)  # 上壓, 下壓, 脈搏, 血糖值, 呼吸, 血含氧量, 體溫
    condition_operator = Column(String(8), nullable=False)  # gt | lt | gte | lte | eq | ne
    condition_value = Column(Float, nullable=False)
    action_if_met = Column(String(32), nullable=False, default="block_dispensing")

    prescription = relationship("Prescription", back_populates="inspection_rules")
