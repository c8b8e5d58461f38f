"""Domain-specific exceptions for signaling operations.

Per-message errors are contained by the router and the negotiator; only
``SinkUnavailableError`` ever reaches an HTTP response.
"""

from __future__ import annotations


class SignalingError(Exception):
    status_code: int = 500
    default_detail: str = "Signaling error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class MalformedMessageError(SignalingError):
    status_code = 400
    default_detail = "Malformed signaling message."


class UnknownMessageTypeError(MalformedMessageError):
    default_detail = "Unknown signaling message type."

    def __init__(self, message_type: object) -> None:
        super().__init__(f"Unknown signaling message type: {message_type!r}")
        self.message_type = message_type


class InvalidOfferError(SignalingError):
    status_code = 422
    default_detail = "Offer is missing its type or sdp."


class InvalidAnswerError(SignalingError):
    status_code = 422
    default_detail = "Answer is missing its type or sdp."


class InvalidTransitionError(SignalingError):
    status_code = 409
    default_detail = "Transition not allowed in the current phase."


class PeerNotFoundError(SignalingError):
    status_code = 404
    default_detail = "Addressed peer is not connected."

    def __init__(self, client_id: str) -> None:
        super().__init__(f"Client {client_id!r} is not connected.")
        self.client_id = client_id


class DuplicateClientIdError(SignalingError):
    status_code = 409
    default_detail = "Client id already registered."

    def __init__(self, client_id: str) -> None:
        super().__init__(f"Client id {client_id!r} is already registered.")
        self.client_id = client_id


class SinkUnavailableError(SignalingError):
    status_code = 500
    default_detail = "Call log storage unavailable."
