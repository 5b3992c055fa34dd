"""
Engine error taxonomy.

Every error carries a preset HTTP status code, a machine-readable code and a
user-facing message, so call sites only raise the class. The API layer turns
these into the standard error envelope.
"""


class QuizEngineError(Exception):
    status_code = 400
    code = "quiz_engine_error"
    detail = "Request could not be processed."

    def __init__(self, detail: str = None):
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail


# ── Lookup ────────────────────────────────────────────────────────────────────

class AttemptNotFound(QuizEngineError):
    status_code = 404
    code = "attempt_not_found"
    detail = "Quiz attempt not found."


class QuizNotFound(QuizEngineError):
    status_code = 404
    code = "quiz_not_found"
    detail = "Quiz not found."


class QuizNotPlayable(QuizEngineError):
    """Quiz has no questions, or its question count disagrees with total_questions."""

    status_code = 422
    code = "quiz_not_playable"
    detail = "This quiz cannot be started right now."


# ── Answer recording ──────────────────────────────────────────────────────────

class AttemptNotActive(QuizEngineError):
    status_code = 409
    code = "attempt_not_active"
    detail = "This quiz attempt is already completed. Answer not saved."


class DuplicateAnswer(QuizEngineError):
    status_code = 409
    code = "duplicate_answer"
    detail = "This question has already been answered. Answer not saved."


class QuizMismatch(QuizEngineError):
    status_code = 422
    code = "quiz_mismatch"
    detail = "Question does not belong to this quiz. Answer not saved."


# ── Aggregation ───────────────────────────────────────────────────────────────

class AggregationFailure(QuizEngineError):
    """An aggregation step failed after the attempt was completed.

    The attempt stays completed; the pending step is retried by reconciliation.
    """

    status_code = 500
    code = "aggregation_failure"
    detail = "Aggregation is pending."

    def __init__(self, attempt_id: int, failed_steps: list, detail: str = None):
        super().__init__(detail or f"Aggregation pending for attempt {attempt_id}: {', '.join(failed_steps)}")
        self.attempt_id = attempt_id
        self.failed_steps = failed_steps


# ── Storage ───────────────────────────────────────────────────────────────────

class AnswerNotSaved(QuizEngineError):
    status_code = 503
    code = "answer_not_saved"
    detail = "Answer not saved, please try again."


class CompletionFailed(QuizEngineError):
    """The Completed transition itself could not be written."""

    status_code = 503
    code = "completion_failed"
    detail = "Could not complete quiz, please try again."
