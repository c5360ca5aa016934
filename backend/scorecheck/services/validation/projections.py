"""Read-side review queues.

Both queues query the score and vote tables directly on every call, so a
score that has just been resolved is gone on the next read.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from flask import current_app

from scorecheck import db
from scorecheck.models import Score, ValidationState, Verdict, Vote
from .policy import QuorumPolicy, current_policy
from .resolver import Tally


@dataclass(frozen=True)
class PendingEntry:
    score: Score
    approve_count: int
    reject_count: int
    votes_needed: int

    def to_dict(self):
        data = self.score.to_dict()
        data.update({
            'approve_count': self.approve_count,
            'reject_count': self.reject_count,
            'votes_needed': self.votes_needed,
        })
        return data


def tallies_for(score_ids: Iterable[int]) -> Dict[int, Tally]:
    """Vote counts for many scores in one query."""
    ids = list(score_ids)
    if not ids:
        return {}
    rows = db.session.execute(
        db.select(Vote.score_id, Vote.verdict, db.func.count(Vote.id))
        .where(Vote.score_id.in_(ids))
        .group_by(Vote.score_id, Vote.verdict)
    ).all()
    counts = {sid: {} for sid in ids}
    for score_id, verdict, count in rows:
        counts[score_id][verdict] = count
    return {
        sid: Tally(approve_count=c.get(Verdict.APPROVE, 0), reject_count=c.get(Verdict.REJECT, 0))
        for sid, c in counts.items()
    }


def reviewable_by(requester_id: int, limit: Optional[int] = None) -> List[Score]:
    """Pending scores the requester may still vote on, oldest first."""
    if limit is None:
        limit = int(current_app.config.get('REVIEW_QUEUE_LIMIT', 50))
    already_voted = (
        db.select(Vote.id)
        .where(Vote.score_id == Score.id, Vote.voter_id == requester_id)
        .exists()
    )
    return (
        Score.query
        .filter(Score.validation_state == ValidationState.PENDING)
        .filter(Score.owner_id != requester_id)
        .filter(~already_voted)
        .order_by(Score.created_at.asc(), Score.id.asc())
        .limit(limit)
        .all()
    )


def my_pending(requester_id: int, policy: Optional[QuorumPolicy] = None) -> List[PendingEntry]:
    """The requester's own pending scores with how many approvals they still need."""
    policy = current_policy(policy)
    scores = (
        Score.query
        .filter_by(owner_id=requester_id, validation_state=ValidationState.PENDING)
        .order_by(Score.created_at.asc(), Score.id.asc())
        .all()
    )
    tallies = tallies_for(s.id for s in scores)
    return [
        PendingEntry(
            score=s,
            approve_count=tallies[s.id].approve_count,
            reject_count=tallies[s.id].reject_count,
            votes_needed=policy.votes_needed(tallies[s.id].approve_count),
        )
        for s in scores
    ]
