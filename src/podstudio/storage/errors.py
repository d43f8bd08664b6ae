"""Translation of raw object-store errors into the podstudio taxonomy.

``classify_store_error`` is the only place that looks at error codes and
message text; everything else works with the typed exceptions it produces.
"""

import enum
from typing import Optional

from botocore.exceptions import (
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
)

from ..errors import (
    AuthFailure,
    ObjectNotFound,
    PodStudioError,
    ServiceUnavailable,
    StoreError,
    UnknownStoreError,
)
from ..retry import is_transient_error


class StoreErrorKind(enum.Enum):
    NOT_FOUND = "not_found"
    AUTH = "auth"
    TRANSIENT = "transient"
    FATAL = "fatal"


NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}
AUTH_CODES = {
    "401",
    "403",
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "InvalidToken",
    "ExpiredToken",
    "AuthorizationHeaderMalformed",
}

_NOT_FOUND_TEXT = ("nosuchkey", "not found", "does not exist")
_AUTH_TEXT = ("invalidaccesskeyid", "signaturedoesnotmatch", "access denied", "credentials")


def _client_error_parts(exc: ClientError):
    error = exc.response.get("Error", {})
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return str(error.get("Code", "")), status


def classify_store_error(exc: BaseException) -> StoreErrorKind:
    """Tag a raw store exception with its kind."""
    if isinstance(exc, StoreError):
        return StoreErrorKind(exc.kind)
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return StoreErrorKind.AUTH

    if isinstance(exc, ClientError):
        code, status = _client_error_parts(exc)
        if code in NOT_FOUND_CODES or status == 404:
            return StoreErrorKind.NOT_FOUND
        if code in AUTH_CODES or status in (401, 403):
            return StoreErrorKind.AUTH

    if is_transient_error(exc):
        return StoreErrorKind.TRANSIENT

    # Some S3-compatible endpoints only put the useful bit in the message.
    text = str(exc).lower()
    if any(marker in text for marker in _NOT_FOUND_TEXT):
        return StoreErrorKind.NOT_FOUND
    if any(marker in text for marker in _AUTH_TEXT):
        return StoreErrorKind.AUTH
    return StoreErrorKind.FATAL


def is_retryable_store_error(exc: BaseException) -> bool:
    return classify_store_error(exc) is StoreErrorKind.TRANSIENT


def translate_store_error(
    exc: BaseException, operation: str, key: Optional[str] = None
) -> PodStudioError:
    """Typed exception for ``exc``, keeping the original message."""
    if isinstance(exc, PodStudioError):
        return exc

    kind = classify_store_error(exc)
    attempts = getattr(exc, "attempts", 1)
    message = str(exc) or exc.__class__.__name__

    if kind is StoreErrorKind.NOT_FOUND:
        return ObjectNotFound(key or "", operation=operation, message=message)
    if kind is StoreErrorKind.AUTH:
        return AuthFailure(message, operation=operation, attempts=attempts)
    if kind is StoreErrorKind.TRANSIENT:
        return ServiceUnavailable(message, operation=operation, attempts=attempts)
    return UnknownStoreError(message, operation=operation, attempts=attempts)
