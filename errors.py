"""Error taxonomy for the voting service.

Every error carries the HTTP status it maps to and a message that is safe to
show to an untrusted caller. Internal detail goes to the log, never here.
"""


class VotingError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message=None, status_code=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message}


class InvalidInput(VotingError):
    status_code = 400
    default_message = "Invalid input"


class NotFound(VotingError):
    status_code = 404
    default_message = "Student not found"


class AlreadyVoted(VotingError):
    status_code = 403
    default_message = "You have already voted in this election"


class RateLimited(VotingError):
    status_code = 429
    default_message = "Please wait before requesting another OTP"

    def __init__(self, retry_after, message=None):
        super().__init__(message)
        self.retry_after = int(retry_after)

    def to_dict(self):
        data = super().to_dict()
        data["retryAfter"] = self.retry_after
        return data


class InvalidCode(VotingError):
    status_code = 400
    default_message = "Invalid OTP. Please check and try again."


class Expired(VotingError):
    status_code = 400
    default_message = "OTP has expired. Please request a new OTP once the cooldown has passed."


class IncompleteSelection(VotingError):
    status_code = 400
    default_message = "Please select one candidate for every post"


class StudentLookupFailed(VotingError):
    status_code = 500
    default_message = "Could not verify student information"


class StorageError(VotingError):
    status_code = 500
    default_message = "Database error"


class DeliveryError(VotingError):
    status_code = 500
    default_message = "Failed to send OTP email"


class Unauthorized(VotingError):
    status_code = 401
    default_message = "Authentication required"
