from typing import Any, Dict, Optional


class ExamError(Exception):
    """Base of every per-request failure the engine reports to its caller."""

    status_code = 400
    code = "EXAM_ERROR"
    default_message = "Exam request failed"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"status": "error", "code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFound(ExamError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class Forbidden(ExamError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "You do not have access to this resource"


class MembershipRequired(ExamError):
    status_code = 403
    code = "MEMBERSHIP_REQUIRED"
    default_message = "An active membership is required"


class FeatureNotEntitled(ExamError):
    status_code = 403
    code = "FEATURE_NOT_ENTITLED"
    default_message = "Your membership does not include this feature"


class QuotaExhausted(ExamError):
    status_code = 403
    code = "QUOTA_EXHAUSTED"
    default_message = "Your quota for this feature is used up"


class Blocked(ExamError):
    # 423 Locked: recoverable by submitting the unlock code
    status_code = 423
    code = "EXAM_BLOCKED"
    default_message = "Exam access is blocked. Contact an admin for the unlock code."


class NotYetOpen(ExamError):
    status_code = 403
    code = "NOT_YET_OPEN"
    default_message = "This assessment is not open yet"


class Closed(ExamError):
    status_code = 403
    code = "CLOSED"
    default_message = "This assessment is closed"


class InvalidCode(ExamError):
    status_code = 400
    code = "INVALID_CODE"
    default_message = "Unlock code is invalid"


class NoActiveBlock(ExamError):
    status_code = 404
    code = "NO_ACTIVE_BLOCK"
    default_message = "There is no active block for this exam type"


class ValidationFailed(ExamError):
    status_code = 422
    code = "VALIDATION_FAILED"
    default_message = "Question set is invalid"
