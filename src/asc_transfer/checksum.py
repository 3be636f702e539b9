from asc_transfer.errors import ChecksumMismatch
from asc_transfer.errors import ChecksumMissing
from dataclasses import dataclass

import hashlib
import logging


logger = logging.getLogger(__name__)

MD5 = "MD5"
SHA_256 = "SHA_256"

_ALGORITHMS = {
    "md5": MD5,
    "sha256": SHA_256,
    "sha_256": SHA_256,
    "sha-256": SHA_256,
}

_HASHERS = {
    MD5: hashlib.md5,
    SHA_256: hashlib.sha256,
}

_READ_SIZE = 1024 * 1024


def normalize_algorithm(algorithm):
    """Return the canonical algorithm name, or None if unsupported."""
    return _ALGORITHMS.get((algorithm or "").strip().lower())


@dataclass(frozen=True)
class Checksum:
    algorithm: str
    hash: str

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(algorithm=data.get("algorithm", ""), hash=data.get("hash", ""))


@dataclass(frozen=True)
class Checksums:
    """Whole-file and composite checksums of one source file."""

    file: Checksum = None
    composite: Checksum = None

    @classmethod
    def from_dict(cls, data):
        """Read the ``sourceFileChecksums`` object of an upload response."""
        data = data or {}
        return cls(
            file=Checksum.from_dict(data.get("file")),
            composite=Checksum.from_dict(data.get("composite")),
        )


class _NotRequested:
    def __bool__(self):
        return False

    def __repr__(self):
        return "NOT_REQUESTED"


NOT_REQUESTED = _NotRequested()
"""Returned by ``verify_checksums`` when no checksum was asked for."""


def compute_file_checksum(path, algorithm):
    canonical = normalize_algorithm(algorithm)
    if canonical is None:
        raise ChecksumMissing(f"unsupported checksum algorithm: {algorithm}")
    return _digest_file(path, {canonical})[canonical]


def _digest_file(path, algorithms):
    hashers = {name: _HASHERS[name]() for name in algorithms}
    with open(path, "rb") as f:
        while True:
            block = f.read(_READ_SIZE)
            if not block:
                break
            for hasher in hashers.values():
                hasher.update(block)
    return {
        name: Checksum(algorithm=name, hash=hasher.hexdigest())
        for name, hasher in hashers.items()
    }


def _checked_expectation(kind, checksum):
    expected = (checksum.hash or "").strip()
    if not expected:
        raise ChecksumMissing(f"{kind} checksum hash is missing")
    algorithm = normalize_algorithm(checksum.algorithm)
    if algorithm is None:
        raise ChecksumMissing(
            f"{kind} checksum algorithm is missing or unsupported: {checksum.algorithm!r}"
        )
    return algorithm, expected


def verify_checksums(path, expected):
    """Hash ``path`` once and compare against the expected checksums.

    Returns the computed ``Checksums``, or ``NOT_REQUESTED`` when
    ``expected`` names no checksum at all. Comparison ignores case.
    """
    wanted = []
    if expected is not None:
        for kind in ("file", "composite"):
            checksum = getattr(expected, kind)
            if checksum is not None:
                wanted.append((kind,) + _checked_expectation(kind, checksum))
    if not wanted:
        logger.debug("No checksum requested for %s", path)
        return NOT_REQUESTED

    digests = _digest_file(path, {algorithm for _kind, algorithm, _exp in wanted})
    computed = {}
    for kind, algorithm, expected_hash in wanted:
        actual = digests[algorithm]
        if expected_hash.lower() != actual.hash.lower():
            raise ChecksumMismatch(kind, expected_hash, actual.hash)
        computed[kind] = actual
    return Checksums(**computed)
