import base64
import hashlib

import common.constants as constants

# Unit separator; cannot appear in scope ids, environment names or regions
_SEPARATOR = "\x1f"


def generate_token(
    scope_id: str,
    environment_name: str,
    region: str,
    length: int = constants.RESOURCE_TOKEN_LENGTH,
) -> str:
    """Derive the resource token used as a uniqueness suffix in resource names.

    The token is a pure function of its inputs: lower-case characters from the
    base32 alphabet (a-z, 2-7) taken from a SHA-256 digest of the joined inputs.
    """
    if length < 1 or length > 52:
        raise ValueError(f"Token length must be between 1 and 52, got {length}")
    payload = _SEPARATOR.join((scope_id, environment_name, region)).encode("utf-8")
    digest = hashlib.sha256(payload).digest()
    return base64.b32encode(digest).decode("ascii").lower()[:length]
