"""
Errors raised by the ingestion pipeline.

Only validation, lookup and persistence failures are raised to the HTTP
layer. Everything after the event row is written is contained and logged.
"""

HTTP_400_BAD_REQUEST = 400
HTTP_404_NOT_FOUND = 404
HTTP_500_INTERNAL_SERVER_ERROR = 500
HTTP_503_SERVICE_UNAVAILABLE = 503


class TrackingError(Exception):
    """Base error carrying an HTTP status and a message safe to return to the storefront."""

    status_code = HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, internal_error: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.internal_error = internal_error


class InvalidPayloadError(TrackingError):
    status_code = HTTP_400_BAD_REQUEST


class MissingFieldsError(TrackingError):
    status_code = HTTP_400_BAD_REQUEST

    def __init__(self, missing: list[str]):
        super().__init__(f"Missing required fields: {', '.join(missing)}")
        self.missing = missing


class PixelNotFoundError(TrackingError):
    status_code = HTTP_404_NOT_FOUND

    def __init__(self, pixel_id: str):
        super().__init__("Pixel not found")
        self.pixel_id = pixel_id


class StoreUnavailableError(TrackingError):
    status_code = HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, internal_error: Exception | None = None):
        super().__init__("Database temporarily unavailable", internal_error)


class PersistenceError(TrackingError):
    status_code = HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, internal_error: Exception | None = None):
        super().__init__("Failed to record event", internal_error)
