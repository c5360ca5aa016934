"""Consensus resolver: community votes and terminal transitions.

``transition`` is the only code that changes ``Score.validation_state``
after insert. It is a conditional UPDATE guarded by
``validation_state = 'pending'``, so of any number of concurrent callers
exactly one moves the score and enqueues its notification. ``cast_vote``
additionally takes a row lock on the score for the vote-count-transition
sequence (a no-op on SQLite, which serialises writers anyway).
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from scorecheck import db
from scorecheck.models import (
    NotificationType,
    RejectionReason,
    Score,
    ScorePayload,
    ValidationState,
    Verdict,
    Vote,
    utcnow,
)
from . import notifier
from .errors import (
    InvalidVote,
    InvalidVoter,
    ScoreAlreadyResolved,
    ScoreNotFound,
    ScoreValidationError,
    StorageUnavailable,
)
from .policy import QuorumPolicy, current_policy


_OUTCOME_NOTIFICATIONS = {
    ValidationState.ACCEPTED: NotificationType.SCORE_ACCEPTED,
    ValidationState.DECLINED: NotificationType.SCORE_DECLINED,
}


@dataclass(frozen=True)
class Tally:
    approve_count: int = 0
    reject_count: int = 0


@dataclass(frozen=True)
class VoteOutcome:
    score_id: int
    state: ValidationState
    approve_count: int
    reject_count: int
    transitioned: bool

    def to_dict(self):
        return {
            'score_id': self.score_id,
            'validation_state': self.state.value,
            'approve_count': self.approve_count,
            'reject_count': self.reject_count,
            'transitioned': self.transitioned,
        }


class _VoteConflict(Exception):
    """Unique (score_id, voter_id) violated by a concurrent first vote."""


def decide(tally: Tally, policy: QuorumPolicy) -> Optional[ValidationState]:
    """Approvals win over rejections when both reach quorum."""
    if tally.approve_count >= policy.approvals_to_accept:
        return ValidationState.ACCEPTED
    if tally.reject_count >= policy.rejections_to_decline:
        return ValidationState.DECLINED
    return None


def vote_tally(score_id: int) -> Tally:
    """Count live votes straight from the ledger."""
    rows = db.session.execute(
        db.select(Vote.verdict, db.func.count(Vote.id))
        .where(Vote.score_id == score_id)
        .group_by(Vote.verdict)
    ).all()
    counts = {verdict: count for verdict, count in rows}
    return Tally(
        approve_count=counts.get(Verdict.APPROVE, 0),
        reject_count=counts.get(Verdict.REJECT, 0),
    )


def get_vote(score_id: int, voter_id: int) -> Optional[Vote]:
    return Vote.query.filter_by(score_id=score_id, voter_id=voter_id).first()


def transition(score: Score, outcome: ValidationState):
    """Move a pending score to ``outcome`` and stage its notification.

    Returns the staged notification, or None if the score was no longer
    pending. The caller owns the transaction.
    """
    if outcome not in _OUTCOME_NOTIFICATIONS:
        raise ValueError(f"not a terminal state: {outcome!r}")
    result = db.session.execute(
        db.update(Score)
        .where(Score.id == score.id, Score.validation_state == ValidationState.PENDING)
        .values(validation_state=outcome, resolved_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current_app.logger.info(f"[transition-lost] score={score.id} wanted={outcome.value}")
        return None
    db.session.refresh(score)
    notification = notifier.enqueue(
        score.owner_id,
        _OUTCOME_NOTIFICATIONS[outcome],
        ScorePayload(score_id=score.id, machine_name=score.machine_name, claimed_value=score.claimed_value),
    )
    current_app.logger.info(f"[transition] score={score.id} pending->{outcome.value}")
    return notification


def _coerce_vote(verdict, reason_code) -> Tuple[Verdict, Optional[RejectionReason]]:
    try:
        verdict = Verdict(verdict)
    except ValueError:
        raise InvalidVote("verdict must be 'approve' or 'reject'") from None
    if verdict is Verdict.APPROVE:
        return verdict, None
    if reason_code is None:
        return verdict, RejectionReason.OTHER
    try:
        return verdict, RejectionReason(reason_code)
    except ValueError:
        allowed = ', '.join(r.value for r in RejectionReason)
        raise InvalidVote(f"reason_code must be one of: {allowed}") from None


def _load_for_update(score_id: int) -> Optional[Score]:
    return db.session.execute(
        db.select(Score)
        .where(Score.id == score_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _upsert_vote(score_id: int, voter_id: int, verdict: Verdict, reason: Optional[RejectionReason]) -> None:
    vote = get_vote(score_id, voter_id)
    if vote is None:
        db.session.add(Vote(score_id=score_id, voter_id=voter_id, verdict=verdict, reason_code=reason))
    elif vote.verdict != verdict or vote.reason_code != reason:
        vote.verdict = verdict
        vote.reason_code = reason
        vote.updated_at = utcnow()
    db.session.flush()


def _cast_vote_once(score_id, voter_id, verdict, reason, policy):
    try:
        score = _load_for_update(score_id)
        if score is None:
            raise ScoreNotFound()
        if voter_id == score.owner_id:
            raise InvalidVoter()
        if not score.is_pending:
            raise ScoreAlreadyResolved()

        _upsert_vote(score.id, voter_id, verdict, reason)
        tally = vote_tally(score.id)
        decision = decide(tally, policy)
        notification = None
        if decision is not None:
            notification = transition(score, decision)
            if notification is None:
                raise ScoreAlreadyResolved()
        db.session.commit()
    except ScoreValidationError:
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.info(f"[vote-conflict] score={score_id} voter={voter_id}")
        raise _VoteConflict() from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception(f"[vote-storage-error] score={score_id} voter={voter_id}")
        raise StorageUnavailable() from exc

    outcome = VoteOutcome(
        score_id=score_id,
        state=decision or ValidationState.PENDING,
        approve_count=tally.approve_count,
        reject_count=tally.reject_count,
        transitioned=notification is not None,
    )
    return outcome, notification


def cast_vote(score_id: int, voter_id: int, verdict, reason_code=None,
              policy: Optional[QuorumPolicy] = None) -> VoteOutcome:
    """Record (or change) a voter's verdict and resolve the score if quorum is met.

    Raises ScoreNotFound, InvalidVoter, ScoreAlreadyResolved, InvalidVote or
    StorageUnavailable. Nothing is committed when an error is raised.
    """
    policy = current_policy(policy)
    verdict, reason = _coerce_vote(verdict, reason_code)
    attempts = max(1, int(current_app.config.get('VOTE_CONFLICT_RETRIES', 3)))
    try:
        for attempt in Retrying(stop=stop_after_attempt(attempts), retry=retry_if_exception_type(_VoteConflict), reraise=True):
            with attempt:
                outcome, notification = _cast_vote_once(score_id, voter_id, verdict, reason, policy)
    except _VoteConflict as exc:
        raise StorageUnavailable('Vote conflicted with a concurrent write, please retry') from exc

    current_app.logger.info(
        f"[vote] score={score_id} voter={voter_id} verdict={verdict.value} "
        f"approve={outcome.approve_count} reject={outcome.reject_count} state={outcome.state.value}"
    )
    if notification is not None:
        notifier.dispatch([notification.id])
    return outcome
