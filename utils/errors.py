"""Domain exceptions raised by the grievance services and mapped to JSON responses."""


class GrievanceError(Exception):
    """Base class for failures a caller can act on."""

    status_code = 400

    def __init__(self, message: str = "Request could not be processed") -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {"error": self.message}


class ValidationError(GrievanceError):
    """Raised when input or a workflow precondition is violated."""

    status_code = 400


class NotFoundError(GrievanceError):
    """Raised when a referenced complaint, officer, user or request does not exist."""

    status_code = 404

    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(f"{resource} not found")
        self.resource = resource
