class ScoreValidationError(Exception):
    """Base for errors returned to the caller of a validation operation."""

    status_code = 400
    code = 'validation_error'
    retryable = False

    def __init__(self, message=None):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__

    def to_dict(self):
        return {'error': self.message, 'code': self.code, 'retryable': self.retryable}


class ScoreNotFound(ScoreValidationError):
    """Score not found"""
    status_code = 404
    code = 'score_not_found'


class InvalidVoter(ScoreValidationError):
    """You cannot vote on your own score"""
    status_code = 403
    code = 'invalid_voter'


class ScoreAlreadyResolved(ScoreValidationError):
    """This score was already resolved"""
    status_code = 409
    code = 'score_already_resolved'


class InvalidVote(ScoreValidationError):
    """Invalid vote"""
    code = 'invalid_vote'


class InvalidSubmission(ScoreValidationError):
    """Invalid score submission"""
    code = 'invalid_submission'


class StorageUnavailable(ScoreValidationError):
    """Storage is temporarily unavailable, please retry"""
    status_code = 503
    code = 'storage_unavailable'
    retryable = True
