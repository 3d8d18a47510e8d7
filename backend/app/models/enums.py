"""
Enumerations shared by models, schemas and the workflow engine.

The string values are stored in the database and shown on the nurse station
UI, so they must never be translated or renamed.
"""
from enum import Enum


class StepStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class WorkflowStep(str, Enum):
    """The three ordered steps of every occurrence: 執藥 → 核藥 → 派藥."""
    PREPARATION = "preparation"
    VERIFICATION = "verification"
    DISPENSING = "dispensing"

    @property
    def predecessor(self) -> "WorkflowStep | None":
        index = STEP_ORDER.index(self)
        return STEP_ORDER[index - 1] if index > 0 else None

    def with_later_steps(self) -> list["WorkflowStep"]:
        """This step followed by every step that depends on it."""
        return STEP_ORDER[STEP_ORDER.index(self):]


STEP_ORDER = [WorkflowStep.PREPARATION, WorkflowStep.VERIFICATION, WorkflowStep.DISPENSING]


class FailureReason(str, Enum):
    HOME = "回家"
    HOSPITAL_ADMISSION = "入院"
    REFUSED = "拒服"
    SKIPPED = "略去"  # inspection condition not met
    INSUFFICIENT_STOCK = "藥物不足"
    OTHER = "其他"  # requires custom text


# Patient-level events that can fail a whole time slot at once
BATCHABLE_REASONS = frozenset({FailureReason.HOME, FailureReason.HOSPITAL_ADMISSION})


class FrequencyType(str, Enum):
    DAILY = "daily"
    EVERY_X_DAYS = "every_x_days"
    EVERY_X_MONTHS = "every_x_months"
    WEEKLY_DAYS = "weekly_days"
    ODD_EVEN_DAYS = "odd_even_days"


class OddEvenDay(str, Enum):
    ODD = "odd"
    EVEN = "even"
    NONE = "none"


class PrescriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING_CHANGE = "pending_change"


class PreparationMethod(str, Enum):
    IMMEDIATE = "immediate"
    ADVANCED = "advanced"
    CUSTOM = "custom"


class AdministrationRoute(str, Enum):
    ORAL = "口服"
    INJECTION = "注射"


class VitalSignType(str, Enum):
    SYSTOLIC = "上壓"
    DIASTOLIC = "下壓"
    PULSE = "脈搏"
    BLOOD_GLUCOSE = "血糖值"
    RESPIRATION = "呼吸"
    SPO2 = "血含氧量"
    TEMPERATURE = "體溫"


class ConditionOperator(str, Enum):
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    EQ = "eq"
    NE = "ne"

    @classmethod
    def parse(cls, raw: str) -> "ConditionOperator":
        """Accept stored codes ("gt") as well as symbols (">")."""
        value = (raw or "").strip()
        return cls(OPERATOR_SYMBOLS.get(value, value))


OPERATOR_SYMBOLS = {">": "gt", "<": "lt", ">=": "gte", "<=": "lte", "==": "eq", "=": "eq", "!=": "ne"}


class RuleAction(str, Enum):
    BLOCK_DISPENSING = "block_dispensing"
    FLAG_FOR_REVIEW = "flag_for_review"


class HealthRecordType(str, Enum):
    VITAL_SIGNS = "生命表徵"
    BLOOD_GLUCOSE = "血糖控制"
    WEIGHT = "體重控制"


class ResidencyStatus(str, Enum):
    RESIDENT = "在住"
    AWAITING_ADMISSION = "待入住"
    DISCHARGED = "已退住"


class EpisodeType(str, Enum):
    HOSPITAL_ADMISSION = "入院"
    HOME_LEAVE = "回家"


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
