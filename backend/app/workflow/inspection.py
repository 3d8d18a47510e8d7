"""
Inspection rule evaluator.

Run just before dispensing: each rule attached to a prescription compares one
vital sign against a threshold. A bedside reading taken during this step wins
over history; with no value at all the rule is skipped rather than blocking.

Evaluation never writes. The state machine decides what to persist.
"""
import logging
import operator
from typing import Dict, Optional

from app.core.exceptions import OccurrenceNotFound, WorkflowValidationError
from app.models.enums import ConditionOperator, RuleAction, VitalSignType
from app.schemas.inspection import InspectionCheckResult, RuleEvaluation
from app.services.store import WorkflowStore

logger = logging.getLogger(__name__)

COMPARATORS = {
    ConditionOperator.GT: operator.gt,
    ConditionOperator.LT: operator.lt,
    ConditionOperator.GTE: operator.ge,
    ConditionOperator.LTE: operator.le,
    ConditionOperator.EQ: operator.eq,
    ConditionOperator.NE: operator.ne,
}

OPERATOR_LABELS = {
    ConditionOperator.GT: ">",
    ConditionOperator.LT: "<",
    ConditionOperator.GTE: ">=",
    ConditionOperator.LTE: "<=",
    ConditionOperator.EQ: "==",
    ConditionOperator.NE: "!=",
}


def normalize_fresh_reading(fresh_reading: Optional[Dict[str, float]]) -> Dict[str, float]:
    """Validate a bedside reading {vital_sign_type: value}; drops empty values."""
    if not fresh_reading:
        return {}
    reading = {}
    for raw_type, value in fresh_reading.items():
        try:
            sign = VitalSignType(raw_type)
        except ValueError:
            raise WorkflowValidationError(f"Unknown vital sign type in reading: {raw_type}")
        if value is None:
            continue
        try:
            reading[sign.value] = float(value)
        except (TypeError, ValueError):
            raise WorkflowValidationError(f"Reading for {sign.value} is not a number: {value!r}")
    return reading


def _describe(evaluation: RuleEvaluation) -> str:
    label = OPERATOR_LABELS.get(ConditionOperator(evaluation.condition_operator), evaluation.condition_operator)
    return f"{evaluation.vital_sign_type} {evaluation.actual_value:g} {label} {evaluation.condition_value:g}"


def check_prescription_inspection_rules(
    store: WorkflowStore,
    prescription_id: int,
    patient_id: int,
    fresh_reading: Optional[Dict[str, float]] = None,
) -> InspectionCheckResult:
    """
    Check every inspection rule of a prescription for one patient.

    Returns:
        InspectionCheckResult with can_dispense False when any met rule
        blocks dispensing. Flag-for-review rules are reported but never block.

    Raises:
        OccurrenceNotFound: the prescription does not exist
        WorkflowValidationError: the fresh reading is malformed
    """
    if store.get_prescription(prescription_id) is None:
        raise OccurrenceNotFound(f"Prescription {prescription_id} not found", patient_id=patient_id)

    reading = normalize_fresh_reading(fresh_reading)
    rules = store.get_inspection_rules(prescription_id)
    result = InspectionCheckResult()

    if not rules:
        result.message = "No inspection rules configured"
        return result

    for rule in rules:
        try:
            op = ConditionOperator.parse(rule.condition_operator)
        except ValueError:
            logger.warning(f"[Inspection] Rule {rule.id} has unknown operator {rule.condition_operator!r}; skipped")
            continue

        if rule.vital_sign_type in reading:
            actual, source = reading[rule.vital_sign_type], "fresh"
        else:
            actual, source = store.get_latest_vital_sign(patient_id, rule.vital_sign_type), "history"

        if actual is None:
            logger.debug(f"[Inspection] No {rule.vital_sign_type} for patient {patient_id}; rule {rule.id} skipped")
            continue

        result.used_vital_sign_data[rule.vital_sign_type] = actual
        if not COMPARATORS[op](actual, rule.condition_value):
            continue

        evaluation = RuleEvaluation(
            rule_id=rule.id,
            vital_sign_type=rule.vital_sign_type,
            condition_operator=op.value,
            condition_value=rule.condition_value,
            actual_value=actual,
            action_if_met=rule.action_if_met or RuleAction.BLOCK_DISPENSING.value,
            source=source,
        )
        if evaluation.action_if_met == RuleAction.FLAG_FOR_REVIEW.value:
            result.flagged_rules.append(evaluation)
        else:
            result.blocked_rules.append(evaluation)

    result.can_dispense = not result.blocked_rules
    parts = []
    if result.blocked_rules:
        parts.append("Blocked: " + "; ".join(_describe(r) for r in result.blocked_rules))
    if result.flagged_rules:
        parts.append("Flagged for review: " + "; ".join(_describe(r) for r in result.flagged_rules))
    result.message = " | ".join(parts) or "All inspection rules passed"

    logger.info(
        f"[Inspection] rx={prescription_id} patient={patient_id} can_dispense={result.can_dispense} "
        f"blocked={len(result.blocked_rules)} flagged={len(result.flagged_rules)}"
    )
    return result
