"""Content digests as OCI descriptors use them.

Only the algorithms registered in the OCI image spec are accepted, and a
digest's hex part must have the length that algorithm produces. Digests are
always computed locally from the bytes; registry-reported values are never
taken on trust.
"""

import hashlib
import re
from typing import Union

from ..exceptions import DigestMismatchError

# algorithm ":" lowercase hex
DIGEST_PATTERN = re.compile(r"^(?P<algorithm>[a-z0-9]+):(?P<hex>[a-f0-9]+)$")

OCI_DIGEST_LENGTHS = {"sha256": 64, "sha512": 128}


def calculate_digest(data: Union[bytes, bytearray], algorithm: str = "sha256") -> str:
    """Compute the OCI digest of raw content.

    Args:
        data: Exact bytes of a manifest or blob
        algorithm: ``sha256`` (registry default) or ``sha512``

    Returns:
        Digest in the form "sha256:<64 hex>"

    Raises:
        ValueError: If data is not bytes-like or the algorithm is not an OCI one
    """
    if not isinstance(data, (bytes, bytearray)):
        raise ValueError("Data must be bytes or bytearray")

    if algorithm not in OCI_DIGEST_LENGTHS:
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    return f"{algorithm}:{hashlib.new(algorithm, data).hexdigest()}"


def validate_digest(digest: str) -> bool:
    """Check that a string is a well-formed OCI digest.

    "sha1:..." or a truncated sha256 is rejected, so a tag can never be
    mistaken for a digest reference.
    """
    if not isinstance(digest, str):
        return False

    match = DIGEST_PATTERN.match(digest)
    if not match:
        return False

    expected_length = OCI_DIGEST_LENGTHS.get(match["algorithm"])
    return expected_length is not None and len(match["hex"]) == expected_length


def verify_digest(data: Union[bytes, bytearray], expected_digest: str) -> bool:
    """Check content against a digest, hashing with the digest's own algorithm.

    Raises:
        ValueError: If expected_digest is not a valid OCI digest
    """
    if not validate_digest(expected_digest):
        raise ValueError(f"Invalid digest format: {expected_digest}")

    algorithm = expected_digest.split(":", 1)[0]
    return calculate_digest(data, algorithm) == expected_digest


def ensure_digest(data: Union[bytes, bytearray], expected_digest: str, what: str) -> None:
    """Like verify_digest, but a mismatch is an error.

    Args:
        data: Downloaded content
        expected_digest: Digest the content was requested by
        what: Description used in the error, e.g. "Blob sha256:... from ghcr.io/org/app"

    Raises:
        DigestMismatchError: If the content does not hash to expected_digest
    """
    if not verify_digest(data, expected_digest):
        algorithm = expected_digest.split(":", 1)[0]
        raise DigestMismatchError(
            f"{what} does not match its digest: got {calculate_digest(data, algorithm)}"
        )
