from dataclasses import dataclass
from typing import Mapping, Optional

from flask import current_app


@dataclass(frozen=True)
class QuorumPolicy:
    """Same-verdict votes needed to resolve a pending score."""

    approvals_to_accept: int = 2
    rejections_to_decline: int = 2

    def __post_init__(self):
        if self.approvals_to_accept < 1 or self.rejections_to_decline < 1:
            raise ValueError('quorum sizes must be at least 1')

    @classmethod
    def from_config(cls, config: Mapping) -> 'QuorumPolicy':
        return cls(
            approvals_to_accept=int(config.get('APPROVALS_TO_ACCEPT', 2)),
            rejections_to_decline=int(config.get('REJECTIONS_TO_DECLINE', 2)),
        )

    def votes_needed(self, approve_count: int) -> int:
        return max(0, self.approvals_to_accept - approve_count)


def current_policy(policy: Optional[QuorumPolicy] = None) -> QuorumPolicy:
    """Return ``policy`` or the one configured on the running app."""
    if policy is not None:
        return policy
    return QuorumPolicy.from_config(current_app.config)
