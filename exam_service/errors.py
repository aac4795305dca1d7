class ExamServiceError(Exception):
    status_code = 500
    code = "INTERNAL_SERVER_ERROR"
    default_message = "An unexpected error occurred"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationError(ExamServiceError):
    status_code = 401
    code = "UNAUTHENTICATED"
    default_message = "You must be logged in to perform this action"


class ForbiddenError(ExamServiceError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "You are not authorized to perform this action"


class NotFoundError(ExamServiceError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        self.resource = resource
        super().__init__(f"{resource} not found")


class ValidationError(ExamServiceError):
    status_code = 400
    code = "BAD_USER_INPUT"
    default_message = "Invalid input"


class StorageError(ExamServiceError):
    status_code = 500
    code = "INTERNAL_SERVER_ERROR"
    default_message = "A database error occurred"
