"""
Error taxonomy of the relay.

Every error knows the HTTP status it maps to and renders the
``{"error": ..., "details": ...}`` envelope returned to the caller.
"""

from typing import Optional, Dict


class RelayError(Exception):
    """Base exception for the relay"""

    status = 500

    def __init__(self, error: str, details: Optional[str] = None, status: Optional[int] = None):
        super().__init__(error)
        self.error = error
        self.details = details
        if status is not None:
            self.status = status

    def to_dict(self) -> Dict[str, str]:
        payload = {'error': self.error}
        if self.details is not None:
            payload['details'] = self.details
        return payload


class MissingCredentialError(RelayError):
    """Raised when the caller did not send X-Holded-API-Key"""

    status = 401

    def __init__(self):
        super().__init__('No token provided')


class UpstreamRejectedError(RelayError):
    """Raised when Holded answered with a non-2xx status"""

    def __init__(self, error: str, status: int, body: str):
        super().__init__(error, details=body, status=status)


class UpstreamShapeError(RelayError):
    """Raised when a paginated response lacks the employees array"""

    status = 500


class UpstreamTransportError(RelayError):
    """Raised on network, timeout or JSON decoding failures"""

    status = 500


class PaginationLimitError(RelayError):
    """Raised when upstream keeps returning full pages past max_pages"""

    status = 502


class RequestDeadlineError(RelayError):
    """Raised when handling an inbound request exceeds the deadline"""

    status = 504
