from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from scorecheck import db, precheck
from scorecheck.models import (
    NotificationType,
    PrecheckStatus,
    Score,
    ScorePayload,
    ValidationState,
)
from . import notifier
from .errors import InvalidSubmission, StorageUnavailable
from .precheck import MAX_MACHINE_NAME_LENGTH, UNAVAILABLE, Photo
from .resolver import transition


def _clean_submission(machine_name, location_name, claimed_value):
    if not isinstance(machine_name, str) or not machine_name.strip():
        raise InvalidSubmission('machine_name is required')
    machine_name = machine_name.strip()
    if len(machine_name) > MAX_MACHINE_NAME_LENGTH:
        raise InvalidSubmission(f'machine_name must be at most {MAX_MACHINE_NAME_LENGTH} characters')
    if location_name is not None and not isinstance(location_name, str):
        raise InvalidSubmission('location_name must be a string')
    location_name = (location_name or '').strip() or None
    if isinstance(claimed_value, bool) or not isinstance(claimed_value, int) or claimed_value < 0:
        raise InvalidSubmission('claimed_value must be a non-negative integer')
    return machine_name, location_name, claimed_value


def submit_score(owner_id: int, machine_name: str, location_name: Optional[str], claimed_value: int,
                 photo: Optional[Photo] = None, photo_reference: Optional[str] = None,
                 checker=None) -> Score:
    """Create a score, run the photo pre-check once, and notify the owner.

    A full pre-check match accepts the score straight away; anything else,
    including the service being unavailable, leaves it pending for review.
    If voters resolve the score before the pre-check answers, their outcome
    stands and no pending acknowledgment is sent.
    """
    machine_name, location_name, claimed_value = _clean_submission(machine_name, location_name, claimed_value)
    checker = checker or precheck

    score = Score(
        owner_id=owner_id,
        machine_name=machine_name,
        location_name=location_name,
        claimed_value=claimed_value,
        photo_reference=photo_reference,
        validation_state=ValidationState.PENDING,
        precheck_status=PrecheckStatus.SKIPPED,
    )
    db.session.add(score)
    db.session.commit()
    current_app.logger.info(f"[submit] score={score.id} owner={owner_id} machine={machine_name!r} value={claimed_value}")

    outcome = UNAVAILABLE
    if photo is not None:
        outcome = checker.run(photo, machine_name, claimed_value)

    score_id = score.id
    notification = None
    try:
        # Voters may have resolved the score while the pre-check was running
        db.session.refresh(score, with_for_update=True)
        if photo is not None:
            if outcome is UNAVAILABLE:
                score.precheck_status = PrecheckStatus.UNAVAILABLE
            else:
                score.precheck_status = PrecheckStatus.MATCHED if outcome.full_match else PrecheckStatus.MISMATCHED
                score.precheck_machine_confidence = outcome.machine_confidence
                score.precheck_score_confidence = outcome.score_confidence
        db.session.flush()

        if score.is_pending and outcome and outcome.full_match:
            notification = transition(score, ValidationState.ACCEPTED)
        elif score.is_pending:
            notification = notifier.enqueue(
                owner_id,
                NotificationType.SCORE_PENDING_REVIEW,
                ScorePayload(score_id=score.id, machine_name=machine_name, claimed_value=claimed_value),
            )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception(f"[submit-storage-error] score={score_id} owner={owner_id}")
        raise StorageUnavailable() from exc

    current_app.logger.info(
        f"[submit-done] score={score_id} state={score.validation_state.value} precheck={score.precheck_status.value}"
    )
    if notification is not None:
        notifier.dispatch([notification.id])
    return score
