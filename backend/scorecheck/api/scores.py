from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from scorecheck import db
from scorecheck.models import Score
from scorecheck.services.validation import intake, projections, resolver
from scorecheck.services.validation.errors import ScoreValidationError, InvalidSubmission, ScoreNotFound
from scorecheck.services.validation.precheck import Photo


scores = Blueprint('scores', __name__)


@scores.errorhandler(ScoreValidationError)
def handle_validation_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


@scores.route('', methods=['POST'])
@login_required
def submit_score():
    data = request.get_json(silent=True) or {}
    photo = None
    if data.get('photo'):
        try:
            photo = Photo.from_data_url(data['photo'])
        except ValueError as exc:
            raise InvalidSubmission(str(exc)) from exc
    photo_reference = data.get('photo_reference')
    if photo_reference is not None and not isinstance(photo_reference, str):
        raise InvalidSubmission('photo_reference must be a string')

    score = intake.submit_score(
        owner_id=current_user.id,
        machine_name=data.get('machine_name'),
        location_name=data.get('location_name'),
        claimed_value=data.get('claimed_value'),
        photo=photo,
        photo_reference=photo_reference,
    )
    return jsonify(score.to_dict()), 201


@scores.route('/<int:score_id>', methods=['GET'])
@login_required
def get_score(score_id):
    score = db.session.get(Score, score_id)
    if score is None:
        raise ScoreNotFound()
    tally = resolver.vote_tally(score.id)
    my_vote = resolver.get_vote(score.id, current_user.id)
    payload = score.to_dict()
    payload['approve_count'] = tally.approve_count
    payload['reject_count'] = tally.reject_count
    payload['my_vote'] = my_vote.to_dict() if my_vote else None
    return jsonify(payload)


@scores.route('/<int:score_id>/vote', methods=['POST'])
@login_required
def vote(score_id):
    data = request.get_json(silent=True) or {}
    verdict = data.get('verdict')
    if isinstance(verdict, str):
        verdict = verdict.strip().lower()
    outcome = resolver.cast_vote(
        score_id=score_id,
        voter_id=current_user.id,
        verdict=verdict,
        reason_code=data.get('reason_code'),
    )
    return jsonify(outcome.to_dict())


@scores.route('/review-queue', methods=['GET'])
@login_required
def review_queue():
    return jsonify([s.to_dict() for s in projections.reviewable_by(current_user.id)])


@scores.route('/mine/pending', methods=['GET'])
@login_required
def my_pending():
    return jsonify([entry.to_dict() for entry in projections.my_pending(current_user.id)])
