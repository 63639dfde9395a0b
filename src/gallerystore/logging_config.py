"""Structured logging configuration for GalleryStore.

Every handler installed by ``configure_logging`` carries a ``SecretFilter``.
SigV4 signatures, credential scopes and bearer tokens are scrubbed by
pattern; the storage secret key and the configured API tokens are
registered at startup and scrubbed verbatim.
"""

import json
import logging
import re
import sys
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import ClassVar

from gallerystore.config import GalleryStoreConfig

REDACTED = "[REDACTED]"

# Extra attributes copied from log records into JSON output when present.
EXTRA_FIELDS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "request_id",
    "image_id",
    "stage",
    "storage_key",
    "upstream_status",
)

# Authorization: AWS4-HMAC-SHA256 Credential=AKID/20240501/..., Signature=ab12...
_SIGV4_PATTERNS = (
    (re.compile(r"(Signature=)[0-9a-fA-F]+"), rf"\g<1>{REDACTED}"),
    (re.compile(r"(Credential=)[^,\s]+"), rf"\g<1>{REDACTED}"),
    (re.compile(r"(Bearer\s+)\S+", re.IGNORECASE), rf"\g<1>{REDACTED}"),
)


class SecretFilter(logging.Filter):
    """Redacts signing material and registered secrets from log records.

    Never drops a record; only rewrites ``msg`` and string ``args``.
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self.redact(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                self.redact(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True

    @classmethod
    def redact(cls, text: str) -> str:
        for pattern, replacement in _SIGV4_PATTERNS:
            text = pattern.sub(replacement, text)
        if cls._pattern is not None:
            text = cls._pattern.sub(REDACTED, text)
        return text

    @classmethod
    def register_secrets(cls, secrets: Iterable[str]) -> None:
        """Add literal values to scrub; blank values are ignored."""
        cls._secrets.update(s for s in secrets if s and s.strip())
        if cls._secrets:
            # Longest first so a secret containing another is scrubbed whole
            ordered = sorted(cls._secrets, key=len, reverse=True)
            cls._pattern = re.compile("|".join(re.escape(s) for s in ordered))

    @classmethod
    def clear_secrets(cls) -> None:
        cls._secrets.clear()
        cls._pattern = None


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects.

    Fields: timestamp, level, logger, message, plus any extras.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = SecretFilter.redact(self.formatException(record.exc_info))
        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, default=str)


def configure_logging(
    level: str = "INFO", fmt: str = "text", secrets: Iterable[str] = ()
) -> None:
    """Configure root logging with the specified level and format.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: 'text' for human-readable lines, 'json' for structured output.
        secrets: Literal values to redact from every record, typically the
            storage secret key and the configured API tokens.
    """
    SecretFilter.register_secrets(secrets)

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.addFilter(SecretFilter())
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    root.addHandler(handler)


def config_secrets(config: GalleryStoreConfig) -> list[str]:
    """Values from a GalleryStoreConfig that must never reach a log line."""
    return [config.storage.secret_access_key, *config.auth.tokens]
