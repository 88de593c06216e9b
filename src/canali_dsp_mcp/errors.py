"""Domain-specific errors for canali_dsp_mcp."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    BAD_ENVELOPE = "bad_envelope"
    TRUNCATED = "truncated"
    COOKIE_MISMATCH = "cookie_mismatch"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    UNEXPECTED_LENGTH = "unexpected_length"
    TRANSPORT = "transport"


class CanaliError(Exception):
    """Base error for canali_dsp_mcp."""

    kind: ErrorKind = ErrorKind.TRANSPORT


class DecodeError(CanaliError):
    """Raised when a datagram is not a usable protocol frame."""


class TruncatedFrameError(DecodeError):
    """Raised when a buffer is shorter than the frame it declares."""

    kind = ErrorKind.TRUNCATED


class BadEnvelopeError(DecodeError):
    """Raised on a wrong start marker, end marker or command complement."""

    kind = ErrorKind.BAD_ENVELOPE


class ChecksumMismatchError(DecodeError):
    """Raised when a frame's CRC does not match its contents."""

    kind = ErrorKind.CHECKSUM_MISMATCH


class CookieMismatchError(CanaliError):
    """Raised when a reply belongs to a different exchange."""

    kind = ErrorKind.COOKIE_MISMATCH


class TransportError(CanaliError):
    """Base transport error."""


class TransportSendError(TransportError):
    """Raised when a datagram cannot be sent or the socket fails."""


class RequestTimeoutError(TransportError):
    """Raised when no matching reply arrives before the deadline."""

    kind = ErrorKind.TIMEOUT
