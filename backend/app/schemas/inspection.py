from pydantic import BaseModel, Field
from typing import Optional, Dict, List


class RuleEvaluation(BaseModel):
    """One rule whose condition was met, with the value actually observed."""
    rule_id: Optional[int] = None
    vital_sign_type: str
    condition_operator: str
    condition_value: float
    actual_value: float
    action_if_met: str = "block_dispensing"
    source: str = "history"  # "fresh" when taken at the bedside during dispensing


class InspectionCheckResult(BaseModel):
    """Outcome of checking every inspection rule of a prescription.

    Not stored on its own; a snapshot is kept on the occurrence once
    dispensing completes or is vetoed.
    """
    can_dispense: bool = True
    blocked_rules: List[RuleEvaluation] = Field(default_factory=list)
    flagged_rules: List[RuleEvaluation] = Field(default_factory=list)
    used_vital_sign_data: Dict[str, float] = Field(default_factory=dict)
    message: Optional[str] = None

    def snapshot(self) -> dict:
        return self.model_dump(mode="json")


class InspectionCheckRequest(BaseModel):
    prescription_id: int
    patient_id: int
    fresh_reading: Optional[Dict[str, float]] = None
