"""
Audit logging for medication administration events.

Every step transition, revert, inspection veto, batch failure and
generation run is written as one JSON line to the "audit" logger so the
home can reconstruct who did what to which occurrence, and when.
"""
import logging
import json
from datetime import datetime, timezone
from typing import Any, Optional, Dict, List

# Separate logger for audit events (can be shipped to centralized logging)
audit_logger = logging.getLogger("audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditLog:
    """Central audit logging for workflow events."""

    @staticmethod
    def log_transition(
        record_id: int,
        step: str,
        new_status: str,
        staff_id: Optional[str],
        patient_id: Optional[int] = None,
        reason: Optional[str] = None,
        custom_reason: Optional[str] = None,
    ):
        """
        Log a single step transition.

        Usage:
            AuditLog.log_transition(12, "preparation", "completed", "nurse-chan")
            AuditLog.log_transition(12, "dispensing", "failed", "nurse-chan", reason="拒服")
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": f"workflow.{step}.{new_status}",
            "record_id": record_id,
            "patient_id": patient_id,
            "staff_id": staff_id,
        }
        if reason:
            log_entry["reason"] = reason
        if custom_reason:
            log_entry["custom_reason"] = custom_reason

        audit_logger.info(json.dumps(log_entry, ensure_ascii=False))

    @staticmethod
    def log_inspection_veto(
        record_id: int,
        patient_id: int,
        staff_id: Optional[str],
        blocked_rules: List[Dict[str, Any]],
    ):
        """Dispensing was forced to failed by a blocking inspection rule."""
        log_entry = {
            "timestamp": _now(),
            "event_severity": "WARNING",
            "event_type": "workflow.inspection.blocked",
            "record_id": record_id,
            "patient_id": patient_id,
            "staff_id": staff_id,
            "blocked_rules": blocked_rules,
        }
        audit_logger.warning(json.dumps(log_entry, ensure_ascii=False, default=str))

    @staticmethod
    def log_revert(record_id: int, step: str, reset_steps: List[str]):
        log_entry = {
            "timestamp": _now(),
            "event_type": f"workflow.{step}.reverted",
            "record_id": record_id,
            "reset_steps": reset_steps,
        }
        audit_logger.info(json.dumps(log_entry))

    @staticmethod
    def log_batch_failure(
        patient_id: int,
        scheduled_date: str,
        scheduled_time: str,
        reason: str,
        succeeded: List[int],
        failed: List[int],
        applied: bool,
    ):
        """
        Log a patient-level batch failure (e.g. admitted to hospital).

        Usage:
            AuditLog.log_batch_failure(5, "2024-02-01", "08:00", "入院", [1, 2, 3], [], True)
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": "workflow.batch_failure",
            "patient_id": patient_id,
            "scheduled_date": scheduled_date,
            "scheduled_time": scheduled_time,
            "reason": reason,
            "succeeded": succeeded,
            "failed": failed,
            "applied": applied,
        }
        audit_logger.info(json.dumps(log_entry, ensure_ascii=False))

    @staticmethod
    def log_generation(
        target_date: str,
        records_generated: int,
        already_existing: int,
        excluded_patients: int,
        errors: int,
        skipped: bool = False,
    ):
        log_entry = {
            "timestamp": _now(),
            "event_type": "generation.skipped" if skipped else "generation.run",
            "target_date": target_date,
            "records_generated": records_generated,
            "already_existing": already_existing,
            "excluded_patients": excluded_patients,
            "errors": errors,
        }
        audit_logger.info(json.dumps(log_entry))
