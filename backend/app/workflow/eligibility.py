"""
Eligibility check: which residents should get medication work items today.

Partitions every patient into eligible and excluded-with-reason. The
generator consumes this partition instead of re-deriving it.
"""
import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session

from app.models.enums import EpisodeType, ResidencyStatus
from app.models.patient import Patient
from app.services.store import WorkflowStore

logger = logging.getLogger(__name__)

REASON_NOT_RESIDENT = "不在住狀態"
REASON_HOSPITALIZED = "住院中"
REASON_HOME_LEAVE = "回家渡假中"


@dataclass
class EligibilityPartition:
    target_date: date
    eligible: list[Patient] = field(default_factory=list)
    excluded: list[tuple[Patient, str]] = field(default_factory=list)

    @property
    def eligible_ids(self) -> set[int]:
        return {p.id for p in self.eligible}

    def excluded_reasons(self) -> dict[int, str]:
        return {p.id: reason for p, reason in self.excluded}


def check_eligible_patients(db: Session, target_date: date) -> EligibilityPartition:
    store = WorkflowStore(db)
    partition = EligibilityPartition(target_date=target_date)

    away: dict[int, str] = {}
    for episode in store.get_away_episodes(target_date):
        if episode.episode_type == EpisodeType.HOME_LEAVE.value:
            away.setdefault(episode.patient_id, REASON_HOME_LEAVE)
        else:
            # hospital admission wins over home leave on the same day
            away[episode.patient_id] = REASON_HOSPITALIZED

    for patient in store.list_patients():
        if patient.residency_status != ResidencyStatus.RESIDENT.value:
            partition.excluded.append((patient, REASON_NOT_RESIDENT))
        elif patient.is_hospitalized:
            partition.excluded.append((patient, REASON_HOSPITALIZED))
        elif patient.id in away:
            partition.excluded.append((patient, away[patient.id]))
        else:
            partition.eligible.append(patient)

    logger.debug(
        f"[Eligibility] {target_date}: {len(partition.eligible)} eligible, "
        f"{len(partition.excluded)} excluded"
    )
    return partition
