from scorecheck import db, bcrypt
from scorecheck.services.validation.precheck import Confidence
from flask_login import UserMixin
from dataclasses import dataclass
from datetime import datetime, timezone
import enum


def utcnow():
    return datetime.now(timezone.utc)


def _enum_column(enum_cls, **kwargs):
    """Store an Enum by its value in a plain VARCHAR column."""
    return db.Column(
        db.Enum(
            enum_cls,
            native_enum=False,
            length=32,
            validate_strings=True,
            values_callable=lambda members: [m.value for m in members],
        ),
        **kwargs,
    )


class ValidationState(str, enum.Enum):
    ACCEPTED = 'accepted'
    PENDING = 'pending'
    DECLINED = 'declined'

    @property
    def is_terminal(self):
        return self is not ValidationState.PENDING


class PrecheckStatus(str, enum.Enum):
    SKIPPED = 'skipped'          # no photo supplied
    UNAVAILABLE = 'unavailable'  # service gave no opinion
    MATCHED = 'matched'
    MISMATCHED = 'mismatched'


class Verdict(str, enum.Enum):
    APPROVE = 'approve'
    REJECT = 'reject'


class RejectionReason(str, enum.Enum):
    SCORE_NOT_VISIBLE = 'score_not_visible'
    SCORE_MISMATCH = 'score_mismatch'
    WRONG_MACHINE = 'wrong_machine'
    PHOTO_UNCLEAR = 'photo_unclear'
    SUSPECTED_FAKE = 'suspected_fake'
    OTHER = 'other'


class NotificationType(str, enum.Enum):
    SCORE_ACCEPTED = 'score_accepted'
    SCORE_DECLINED = 'score_declined'
    SCORE_PENDING_REVIEW = 'score_pending_review'


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class Score(db.Model):
    __tablename__ = 'score'
    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    machine_name = db.Column(db.String(100), nullable=False)
    location_name = db.Column(db.String(200), nullable=True)
    claimed_value = db.Column(db.BigInteger, nullable=False)
    photo_reference = db.Column(db.String(512), nullable=True)
    # Only scorecheck.services.validation.resolver.transition writes this after insert
    validation_state = _enum_column(ValidationState, nullable=False, default=ValidationState.PENDING, index=True)
    precheck_status = _enum_column(PrecheckStatus, nullable=False, default=PrecheckStatus.SKIPPED)
    precheck_machine_confidence = _enum_column(Confidence, nullable=True)
    precheck_score_confidence = _enum_column(Confidence, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    owner = db.relationship('User', foreign_keys=[owner_id])
    votes = db.relationship('Vote', backref='score', lazy='dynamic', cascade='all, delete-orphan')

    @property
    def is_pending(self):
        return self.validation_state == ValidationState.PENDING

    def to_dict(self):
        return {
            'id': self.id,
            'owner_id': self.owner_id,
            'machine_name': self.machine_name,
            'location_name': self.location_name,
            'claimed_value': self.claimed_value,
            'photo_reference': self.photo_reference,
            'validation_state': self.validation_state.value,
            'precheck_status': self.precheck_status.value if self.precheck_status else None,
            'precheck_confidence': {
                'machine': self.precheck_machine_confidence.value if self.precheck_machine_confidence else None,
                'score': self.precheck_score_confidence.value if self.precheck_score_confidence else None,
            },
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
        }


class Vote(db.Model):
    __tablename__ = 'vote'
    id = db.Column(db.Integer, primary_key=True)
    score_id = db.Column(db.Integer, db.ForeignKey('score.id', ondelete='CASCADE'), nullable=False, index=True)
    voter_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    verdict = _enum_column(Verdict, nullable=False)
    reason_code = _enum_column(RejectionReason, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    voter = db.relationship('User', foreign_keys=[voter_id])

    __table_args__ = (
        db.UniqueConstraint('score_id', 'voter_id', name='uq_vote_score_voter'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'score_id': self.score_id,
            'voter_id': self.voter_id,
            'verdict': self.verdict.value,
            'reason_code': self.reason_code.value if self.reason_code else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class ScorePayload:
    """What a score notification carries for display."""
    score_id: int
    machine_name: str
    claimed_value: int


class Notification(db.Model):
    __tablename__ = 'notification'
    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    type = _enum_column(NotificationType, nullable=False)
    score_id = db.Column(db.Integer, db.ForeignKey('score.id', ondelete='CASCADE'), nullable=False)
    machine_name = db.Column(db.String(100), nullable=False)
    claimed_value = db.Column(db.BigInteger, nullable=False)
    title = db.Column(db.String(120), nullable=False)
    message = db.Column(db.Text, nullable=False)
    read = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.UniqueConstraint('score_id', 'type', name='uq_notification_score_type'),
    )

    @property
    def payload(self):
        return ScorePayload(
            score_id=self.score_id,
            machine_name=self.machine_name,
            claimed_value=self.claimed_value,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'recipient_id': self.recipient_id,
            'type': self.type.value,
            'title': self.title,
            'message': self.message,
            'payload': {
                'score_id': self.score_id,
                'machine_name': self.machine_name,
                'claimed_value': self.claimed_value,
            },
            'read': self.read,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
