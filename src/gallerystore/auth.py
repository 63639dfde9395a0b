"""Bearer token authentication for GalleryStore.

Tokens are provisioned out of band (``auth.tokens`` in the configuration)
and seeded into the metadata store at startup. A request is authenticated
by resolving its token to an owner id; nothing else about sessions is
handled here.
"""

import logging
import re

from gallerystore.errors import Unauthorized
from gallerystore.metadata import MetadataStore

logger = logging.getLogger(__name__)

# Example: Authorization: Bearer 3f1c...e9
BEARER_RE = re.compile(r"^Bearer\s+(?P<token>\S+)\s*$", re.IGNORECASE)


def parse_bearer_token(header: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` value.

    Raises:
        Unauthorized: If the header is missing or not a bearer credential.
    """
    if not header or not header.strip():
        raise Unauthorized("No authorization header")
    match = BEARER_RE.match(header.strip())
    if match is None:
        raise Unauthorized()
    return match.group("token")


async def authenticate(metadata: MetadataStore, header: str | None) -> str:
    """Resolve an Authorization header to the owner id it belongs to.

    Args:
        metadata: Store holding the token table.
        header: Raw ``Authorization`` header value, if any.

    Returns:
        The owner id.

    Raises:
        Unauthorized: If the header is missing or the token is unknown.
    """
    token = parse_bearer_token(header)
    owner_id = await metadata.get_owner_for_token(token)
    if owner_id is None:
        logger.info("Rejected unknown bearer token")
        raise Unauthorized()
    return owner_id
