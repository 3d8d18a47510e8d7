from app.models.patient import Patient, HospitalEpisode
from app.models.prescription import Prescription, InspectionRule
from app.models.health_record import HealthRecord
from app.models.workflow_record import MedicationWorkflowRecord
from app.models.daily_task import DailySystemTask

__all__ = [
    "Patient",
    "HospitalEpisode",
    "Prescription",
    "InspectionRule",
    "HealthRecord",
    "MedicationWorkflowRecord",
    "DailySystemTask",
]
