"""AWS Signature Version 4 request signing for GalleryStore.

Produces the ``Authorization`` header value for requests sent to an
S3-compatible endpoint. The endpoint recomputes the same canonical request
on its side, so every step below must be reproduced byte for byte: any
difference in casing, whitespace, ordering, or payload marker shows up only
as a ``SignatureDoesNotMatch`` rejection.

Signing is a pure function of its inputs. The clock is supplied through
``SigningContext`` so tests can pin ``x-amz-date`` and assert exact output.

References:
    - https://docs.aws.amazon.com/AmazonS3/latest/API/sig-v4-header-based-auth.html
"""

import hashlib
import hmac
import re
import urllib.parse
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

from gallerystore.errors import ConfigurationError

# Constants
ALGORITHM = "AWS4-HMAC-SHA256"
KEY_PREFIX = "AWS4"
SCOPE_TERMINATOR = "aws4_request"
SERVICE_NAME = "s3"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"


@dataclass(frozen=True)
class Credentials:
    """A static access key pair.

    The secret is excluded from ``repr`` so credentials never end up in logs
    or tracebacks.
    """

    access_key_id: str
    secret_access_key: str = field(repr=False)


@dataclass(frozen=True)
class SigningContext:
    """Region, service, and instant a request is signed for.

    Attributes:
        region: Region name bound into the credential scope.
        service: Service name bound into the credential scope.
        timestamp: Aware UTC instant; captured once per outer operation.
    """

    region: str
    timestamp: datetime
    service: str = SERVICE_NAME

    @property
    def amz_date(self) -> str:
        """ISO 8601 basic-format timestamp (``YYYYMMDDTHHMMSSZ``)."""
        return format_amz_date(self.timestamp)

    @property
    def date_stamp(self) -> str:
        """The ``YYYYMMDD`` prefix of ``amz_date``."""
        return self.amz_date[:8]


@dataclass(frozen=True)
class SignedRequest:
    """Result of signing one request.

    Attributes:
        authorization: Value for the ``Authorization`` header.
        signed_headers: Lower-cased, sorted header names joined with ``;``.
    """

    authorization: str
    signed_headers: str


def sign(
    method: str,
    path: str,
    headers: Mapping[str, str],
    credentials: Credentials,
    context: SigningContext,
    payload_hash: str = UNSIGNED_PAYLOAD,
) -> SignedRequest:
    """Sign a request and return its Authorization value.

    Every header in ``headers`` is signed. The caller must include ``host``
    and an ``x-amz-date`` equal to ``context.amz_date``. ``headers`` is
    never modified.

    Args:
        method: HTTP method, e.g. ``PUT``.
        path: Object key or path; a leading ``/`` is added when absent.
        headers: Headers to sign (any casing, any order).
        credentials: Access key pair.
        context: Region, service, and timestamp.
        payload_hash: Payload hash line of the canonical request.

    Returns:
        The authorization header value and the signed header list.

    Raises:
        ConfigurationError: If a credential, region, or service is empty.
    """
    _check_signing_inputs(credentials, context)

    canonical_request = build_canonical_request(method, path, headers, payload_hash)
    scope = credential_scope(context)
    string_to_sign = build_string_to_sign(context.amz_date, scope, canonical_request)
    signing_key = derive_signing_key(
        credentials.secret_access_key,
        context.date_stamp,
        context.region,
        context.service,
    )
    signature = compute_signature(signing_key, string_to_sign)
    signed_headers = signed_header_names(headers)

    authorization = (
        f"{ALGORITHM} Credential={credentials.access_key_id}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
    return SignedRequest(authorization=authorization, signed_headers=signed_headers)


def _check_signing_inputs(credentials: Credentials, context: SigningContext) -> None:
    missing = [
        name
        for name, value in (
            ("access key id", credentials.access_key_id),
            ("secret access key", credentials.secret_access_key),
            ("region", context.region),
            ("service", context.service),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(f"Missing signing input: {', '.join(missing)}")


# -- Canonical request construction --------------------------------------------


def build_canonical_request(
    method: str,
    path: str,
    headers: Mapping[str, str],
    payload_hash: str = UNSIGNED_PAYLOAD,
) -> str:
    """Build the canonical request string.

    Layout::

        METHOD
        CanonicalURI
        CanonicalQueryString      (always empty here)
        CanonicalHeaders          (each line ends with \\n)

        SignedHeaders
        PayloadHash

    Args:
        method: HTTP method.
        path: Object key or path.
        headers: Headers to sign.
        payload_hash: Hex SHA-256 of the body or ``UNSIGNED-PAYLOAD``.

    Returns:
        The canonical request string.
    """
    parts = [
        method.upper(),
        canonical_uri(path),
        "",
        canonical_headers(headers),
        signed_header_names(headers),
        payload_hash,
    ]
    return "\n".join(parts)


def canonical_uri(path: str) -> str:
    """Return the canonical URI for an object key: ``/`` + encoded key."""
    return uri_encode_path(path if path.startswith("/") else "/" + path)


def canonical_headers(headers: Mapping[str, str]) -> str:
    """Render the canonical header block.

    Names are lower-cased and values trimmed; lines are sorted byte-wise by
    name, so the same header set in any order or casing yields the same
    block.
    """
    lowered = _lower_headers(headers)
    return "".join(f"{name}:{lowered[name]}\n" for name in sorted(lowered))


def signed_header_names(headers: Mapping[str, str]) -> str:
    """Return the sorted, lower-cased header names joined with ``;``."""
    return ";".join(sorted(_lower_headers(headers)))


def _lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    lowered: dict[str, str] = {}
    for name, value in headers.items():
        lower_name = name.strip().lower()
        if lower_name in lowered:
            # Repeated header names are folded into one comma-joined line
            lowered[lower_name] += "," + _trim_header_value(value)
        else:
            lowered[lower_name] = _trim_header_value(value)
    return lowered


# -- String to sign ------------------------------------------------------------


def credential_scope(context: SigningContext) -> str:
    """Return ``DateStamp/Region/Service/aws4_request``."""
    return f"{context.date_stamp}/{context.region}/{context.service}/{SCOPE_TERMINATOR}"


def build_string_to_sign(amz_date: str, scope: str, canonical_request: str) -> str:
    """Build the string to sign.

    Args:
        amz_date: ISO 8601 timestamp (YYYYMMDDTHHMMSSZ).
        scope: Credential scope (YYYYMMDD/region/service/aws4_request).
        canonical_request: The assembled canonical request string.

    Returns:
        The string to sign.
    """
    canonical_hash = hashlib.sha256(canonical_request.encode("utf-8")).hexdigest()
    return f"{ALGORITHM}\n{amz_date}\n{scope}\n{canonical_hash}"


# -- Signing key derivation ----------------------------------------------------


def derive_signing_key(secret_key: str, date: str, region: str, service: str) -> bytes:
    """Derive the SigV4 signing key via the HMAC-SHA256 chain.

    Args:
        secret_key: The secret access key.
        date: Date string (YYYYMMDD).
        region: Region name.
        service: Service name.

    Returns:
        The 32-byte signing key.
    """
    k_date = _hmac((KEY_PREFIX + secret_key).encode("utf-8"), date)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, SCOPE_TERMINATOR)


def compute_signature(signing_key: bytes, string_to_sign: str) -> str:
    """Compute the final HMAC-SHA256 signature as 64 lowercase hex characters."""
    return hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


# ---------------------------------------------------------------------------
# Module-level utility functions
# ---------------------------------------------------------------------------


def format_amz_date(timestamp: datetime) -> str:
    """Format an instant as ``YYYYMMDDTHHMMSSZ`` in UTC.

    Naive datetimes are taken to be UTC already.
    """
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc)
    return timestamp.strftime(AMZ_DATE_FORMAT)


def _uri_encode(s: str, encode_slash: bool = True) -> str:
    """S3-compatible URI encoding.

    Characters A-Z, a-z, 0-9, '-', '_', '.', '~' are not encoded.
    All other characters are percent-encoded with uppercase hex.
    Spaces become %20 (not +).
    """
    safe = "-_.~" if encode_slash else "-_.~/"
    return urllib.parse.quote(s, safe=safe)


def uri_encode_path(path: str) -> str:
    """URI-encode a path segment by segment, preserving forward slashes.

    Used for the canonical URI, the request URL and the copy source, so the
    bytes signed are the bytes sent. Keys are treated as raw text: a literal
    ``%`` is encoded as ``%25``, never taken as an existing escape.
    """
    if not path:
        return "/"
    segments = path.split("/")
    result = "/".join(_uri_encode(seg, encode_slash=False) for seg in segments)
    if not result.startswith("/"):
        result = "/" + result
    return result


def _trim_header_value(value: str) -> str:
    """Strip surrounding whitespace and collapse runs of spaces."""
    return re.sub(r" +", " ", value.strip())


def utc_now() -> datetime:
    """Default clock for signing contexts: the current aware UTC instant."""
    return datetime.now(timezone.utc)
