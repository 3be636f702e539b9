"""Credentials for outbound calls.

Two kinds are produced here: short-lived ES256 bearer tokens for the
publishing API, and AWS Signature Version 4 headers for the single PUT
that places a notarization archive in object storage. Neither is cached.
"""

from asc_transfer.errors import ConfigurationError
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from urllib.parse import quote

import hashlib
import hmac
import jwt
import logging
import os
import stat


logger = logging.getLogger(__name__)

AUDIENCE = "appstoreconnect-v1"
TOKEN_LIFETIME = timedelta(minutes=20)
NOTARY_SCOPE = ("/notary/v2",)
MAX_KEY_FILE_SIZE = 64 * 1024

STORAGE_REGION = "us-west-2"
STORAGE_SERVICE = "s3"
SIGNING_ALGORITHM = "AWS4-HMAC-SHA256"
SCOPE_TERMINATOR = "aws4_request"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def mint_bearer_token(key_id, issuer_id, private_key, scope=None, now=None):
    """Return a compact ES256 JWT for one API call.

    ``kid`` goes in the header; ``iss``, ``aud``, ``iat`` and ``exp``
    (20 minutes later) in the claims, plus ``scope`` when given.
    """
    if not key_id:
        raise ConfigurationError("key ID is required")
    if not issuer_id:
        raise ConfigurationError("issuer ID is required")
    if now is None:
        now = datetime.now(timezone.utc)
    issued_at = int(now.timestamp())
    claims = {
        "iss": issuer_id,
        "aud": AUDIENCE,
        "iat": issued_at,
        "exp": issued_at + int(TOKEN_LIFETIME.total_seconds()),
    }
    if scope:
        claims["scope"] = list(scope)
    try:
        return jwt.encode(claims, private_key, algorithm="ES256", headers={"kid": key_id})
    except (jwt.PyJWTError, TypeError, ValueError) as e:
        raise ConfigurationError(f"failed to sign token: {e}") from e


def mint_notary_token(key_id, issuer_id, private_key, now=None):
    return mint_bearer_token(
        key_id, issuer_id, private_key, scope=NOTARY_SCOPE, now=now
    )


def load_private_key(path):
    """Read an elliptic-curve private key from a PEM file.

    The file must be a regular, non-symlinked file no larger than
    ``MAX_KEY_FILE_SIZE`` and, on POSIX, readable by its owner only.
    """
    try:
        info = os.lstat(path)
    except OSError as e:
        raise ConfigurationError(f"failed to stat key file: {e}") from e
    if stat.S_ISLNK(info.st_mode):
        raise ConfigurationError("private key path must not be a symlink")
    if stat.S_ISDIR(info.st_mode):
        raise ConfigurationError("private key path is a directory")
    if info.st_size > MAX_KEY_FILE_SIZE:
        raise ConfigurationError(
            f"private key file exceeds {MAX_KEY_FILE_SIZE} bytes"
        )
    if os.name == "posix" and info.st_mode & 0o077:
        raise ConfigurationError(
            f"private key file is too permissive; run: chmod 600 {path!r}"
        )

    flags = os.O_RDONLY | getattr(os, "O_NOFOLLOW", 0)
    try:
        fd = os.open(path, flags)
        with os.fdopen(fd, "rb") as f:
            data = f.read(MAX_KEY_FILE_SIZE + 1)
    except OSError as e:
        raise ConfigurationError(f"failed to read key file: {e}") from e
    if len(data) > MAX_KEY_FILE_SIZE:
        raise ConfigurationError(
            f"private key file exceeds {MAX_KEY_FILE_SIZE} bytes"
        )

    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigurationError(f"invalid private key: {e}") from e
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise ConfigurationError("private key is not an elliptic-curve key")
    return key


@dataclass(frozen=True)
class StorageCredentials:
    """Temporary credentials for uploading exactly one object."""

    access_key_id: str
    secret_access_key: str
    session_token: str = ""
    bucket: str = ""
    object_key: str = ""

    @classmethod
    def from_dict(cls, attributes):
        """Read the attributes of a notarization submission response."""
        return cls(
            access_key_id=attributes.get("awsAccessKeyId", ""),
            secret_access_key=attributes.get("awsSecretAccessKey", ""),
            session_token=attributes.get("awsSessionToken", ""),
            bucket=attributes.get("bucket", ""),
            object_key=attributes.get("object", ""),
        )

    def __repr__(self):
        return (
            f"StorageCredentials(access_key_id={self.access_key_id!r}, "
            f"bucket={self.bucket!r}, object_key={self.object_key!r})"
        )


def storage_host(bucket):
    return f"{bucket}.s3.{STORAGE_REGION}.amazonaws.com"


def encode_object_path(object_key):
    """Percent-encode each segment of an object key, keeping the slashes."""
    key = (object_key or "").strip().lstrip("/")
    if not key:
        raise ConfigurationError("object key is required")
    return "/" + "/".join(quote(segment, safe="-_.~") for segment in key.split("/"))


def sha256_hex(data):
    return hashlib.sha256(data).hexdigest()


def _hmac_sha256(key, message):
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(secret_key, date_stamp, region=STORAGE_REGION, service=STORAGE_SERVICE):
    k_date = _hmac_sha256(f"AWS4{secret_key}".encode("utf-8"), date_stamp)
    k_region = _hmac_sha256(k_date, region)
    k_service = _hmac_sha256(k_region, service)
    return _hmac_sha256(k_service, SCOPE_TERMINATOR)


def build_canonical_request(method, path, query, headers, payload_hash):
    """Return ``(canonical_request, signed_headers)``.

    ``headers`` maps lower-case header names to values.
    """
    names = sorted(headers)
    canonical_headers = "".join(
        f"{name}:{' '.join(headers[name].split())}\n" for name in names
    )
    signed_headers = ";".join(names)
    canonical_request = "\n".join(
        [method, path, query, canonical_headers, signed_headers, payload_hash]
    )
    return canonical_request, signed_headers


def build_string_to_sign(amz_date, credential_scope, canonical_request):
    return "\n".join(
        [
            SIGNING_ALGORITHM,
            amz_date,
            credential_scope,
            sha256_hex(canonical_request.encode("utf-8")),
        ]
    )


def sign_storage_upload(credentials, payload, content_type=None, now=None):
    """Sign a PUT of ``payload`` to the credentials' bucket and object.

    Returns ``(authorization, headers)``. ``headers`` holds every other
    header the request must carry; all of them use the one timestamp
    taken here.
    """
    if not credentials.bucket or not credentials.object_key:
        raise ConfigurationError("storage bucket and object are required")
    if not credentials.access_key_id or not credentials.secret_access_key:
        raise ConfigurationError("storage access key and secret are required")
    if now is None:
        now = datetime.now(timezone.utc)
    now = now.astimezone(timezone.utc)
    amz_date = now.strftime("%Y%m%dT%H%M%SZ")
    date_stamp = now.strftime("%Y%m%d")

    payload_hash = sha256_hex(payload)
    host = storage_host(credentials.bucket)
    path = encode_object_path(credentials.object_key)
    content_type = (content_type or "").strip() or DEFAULT_CONTENT_TYPE

    signed = {
        "content-type": content_type,
        "host": host,
        "x-amz-content-sha256": payload_hash,
        "x-amz-date": amz_date,
    }
    if credentials.session_token:
        signed["x-amz-security-token"] = credentials.session_token

    canonical_request, signed_headers = build_canonical_request(
        "PUT", path, "", signed, payload_hash
    )
    credential_scope = (
        f"{date_stamp}/{STORAGE_REGION}/{STORAGE_SERVICE}/{SCOPE_TERMINATOR}"
    )
    string_to_sign = build_string_to_sign(amz_date, credential_scope, canonical_request)
    signature = hmac.new(
        derive_signing_key(credentials.secret_access_key, date_stamp),
        string_to_sign.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()

    authorization = (
        f"{SIGNING_ALGORITHM} Credential={credentials.access_key_id}/{credential_scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
    headers = {
        "Host": host,
        "Content-Type": content_type,
        "X-Amz-Content-Sha256": payload_hash,
        "X-Amz-Date": amz_date,
    }
    if credentials.session_token:
        headers["X-Amz-Security-Token"] = credentials.session_token
    return authorization, headers
