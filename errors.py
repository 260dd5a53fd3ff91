class ValidationError(Exception):
    """Raised when a request is missing a required field or carries an unusable value."""


class ServerUnavailableError(Exception):
    """Raised by the console client when the tracking server cannot be reached after retrying."""


class NotFoundError(Exception):
    """Raised when no shipment matches the requested tracking number."""

    def __init__(self, tracking_number: str, message: str = "Shipment not found"):
        self.tracking_number = tracking_number
        super().__init__(message)
