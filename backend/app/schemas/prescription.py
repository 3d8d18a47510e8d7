from datetime import date, datetime
from typing import Optional, List

from pydantic import BaseModel, field_validator

from app.models.enums import ConditionOperator, FrequencyType, OddEvenDay, RuleAction, VitalSignType
from app.workflow.schedule import normalize_slot


class InspectionRuleCreate(BaseModel):
    vital_sign_type: VitalSignType
    condition_operator: str
    condition_value: float
    action_if_met: RuleAction = RuleAction.BLOCK_DISPENSING

    @field_validator("condition_operator")
    @classmethod
    def known_operator(cls, v: str) -> str:
        return ConditionOperator.parse(v).value


class InspectionRuleResponse(BaseModel):
    id: int
    prescription_id: int
    vital_sign_type: str
    condition_operator: str
    condition_value: float
    action_if_met: str

    class Config:
        from_attributes = True


class PrescriptionBase(BaseModel):
    medication_name: Optional[str] = None
    dosage_amount: Optional[str] = None
    dosage_form: Optional[str] = None
    administration_route: Optional[str] = None
    daily_frequency: Optional[int] = None
    frequency_type: Optional[FrequencyType] = None
    frequency_value: Optional[int] = None
    specific_weekdays: Optional[List[int]] = None
    is_odd_even_day: Optional[OddEvenDay] = None
    medication_time_slots: Optional[List[str]] = None
    meal_timing: Optional[str] = None
    is_prn: Optional[bool] = None
    preparation_method: Optional[str] = None
    start_date: Optional[date] = None
    start_time: Optional[str] = None
    end_date: Optional[date] = None
    end_time: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("medication_time_slots")
    @classmethod
    def normalize_slots(cls, v):
        if v is None:
            return v
        return sorted({normalize_slot(s) for s in v})

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_time(cls, v):
        return normalize_slot(v) if v else v

    @field_validator("specific_weekdays")
    @classmethod
    def weekdays_in_range(cls, v):
        if v and any(d < 1 or d > 7 for d in v):
            raise ValueError("specific_weekdays must be 1 (Mon) .. 7 (Sun)")
        return v

    @field_validator("frequency_value")
    @classmethod
    def positive_interval(cls, v):
        if v is not None and v < 1:
            raise ValueError("frequency_value must be at least 1")
        return v


class PrescriptionCreate(PrescriptionBase):
    patient_id: int
    medication_name: str
    frequency_type: FrequencyType = FrequencyType.DAILY
    is_odd_even_day: OddEvenDay = OddEvenDay.NONE
    medication_time_slots: List[str] = []
    is_prn: bool = False
    preparation_method: str = "immediate"
    start_date: date
    inspection_rules: List[InspectionRuleCreate] = []


class PrescriptionUpdate(PrescriptionBase):
    """Edits only affect future generation runs."""
    status: Optional[str] = None


class PrescriptionResponse(BaseModel):
    id: int
    patient_id: int
    medication_name: str
    dosage_amount: Optional[str] = None
    dosage_form: Optional[str] = None
    administration_route: Optional[str] = None
    daily_frequency: Optional[int] = None
    frequency_type: str
    frequency_value: Optional[int] = None
    specific_weekdays: Optional[List[int]] = None
    is_odd_even_day: str
    medication_time_slots: Optional[List[str]] = None
    meal_timing: Optional[str] = None
    is_prn: bool
    preparation_method: str
    start_date: date
    start_time: Optional[str] = None
    end_date: Optional[date] = None
    end_time: Optional[str] = None
    status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    inspection_rules: List[InspectionRuleResponse] = []

    class Config:
        from_attributes = True
