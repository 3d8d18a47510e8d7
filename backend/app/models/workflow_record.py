"""
MedicationWorkflowRecord: one scheduled administration of one prescription.

Status flow per step: pending -> completed | failed.
Steps are ordered: preparation (執藥) -> verification (核藥) -> dispensing (派藥).
Exactly one row per (prescription, scheduled_date, scheduled_time); the
unique constraint is what makes generation safe to re-run.
Rows are never deleted by normal operation.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Date, Text, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
from app.db.base import Base
from app.models.enums import StepStatus, WorkflowStep


class MedicationWorkflowRecord(Base):
    __tablename__ = "medication_workflow_records"
    __table_args__ = (
        UniqueConstraint("prescription_id", "scheduled_date", "scheduled_time", name="uq_workflow_occurrence"),
        Index("ix_workflow_patient_date", "patient_id", "scheduled_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id", ondelete="CASCADE"), nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False)
    scheduled_date = Column(Date, nullable=False)
    scheduled_time = Column(String(8), nullable=False)  # HH:MM
    meal_timing = Column(String(32), nullable=True)  # copied from prescription at generation

    preparation_status = Column(String(16), nullable=False, default="pending")
    verification_status = Column(String(16), nullable=False, default="pending")
    dispensing_status = Column(String(16), nullable=False, default="pending")

    preparation_staff = Column(String(128), nullable=True)
    verification_staff = Column(String(128), nullable=True)
    dispensing_staff = Column(String(128), nullable=True)

    preparation_time = Column(DateTime(timezone=True), nullable=True)
    verification_time = Column(DateTime(timezone=True), nullable=True)
    dispensing_time = Column(DateTime(timezone=True), nullable=True)

    # Reason for whichever step failed (see failed_step), not only dispensing.
    # Column name kept from the existing schema.
    dispensing_failure_reason = Column(String(16), nullable=True)  # 回家 | 入院 | 拒服 | 略去 | 藥物不足 | 其他
    custom_failure_reason = Column(Text, nullable=True)  # required when reason == 其他
    inspection_check_result = Column(JSON, nullable=True)  # snapshot taken at dispensing time
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    prescription = relationship("Prescription")

    def step_status(self, step) -> str:
        return getattr(self, f"{getattr(step, 'value', step)}_status")

    @property
    def failed_step(self):
        """The step dispensing_failure_reason refers to, or None."""
        for step in WorkflowStep:
            if self.step_status(step) == StepStatus.FAILED.value:
                return step.value
        return None

    def __repr__(self):
        return (
            f"<MedicationWorkflowRecord id={self.id} rx={self.prescription_id} "
            f"{self.scheduled_date} {self.scheduled_time} "
            f"{self.preparation_status}/{self.verification_status}/{self.dispensing_status}>"
        )
