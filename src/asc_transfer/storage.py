from asc_transfer.cancel import run_cancellable
from asc_transfer.errors import ConfigurationError
from asc_transfer.errors import StorageUploadError
from asc_transfer.errors import sanitize_error_body
from asc_transfer.retry import execute_with_retry
from asc_transfer.signing import encode_object_path
from asc_transfer.signing import sign_storage_upload
from asc_transfer.signing import storage_host
from asc_transfer.transport import check_response
from asc_transfer.transport import HTTPTransport
from asc_transfer.transport import RETRYABLE_STATUSES

import logging
import os


logger = logging.getLogger(__name__)

# Larger objects need a multipart upload, which is not supported.
MAX_SINGLE_UPLOAD_BYTES = 5 * 1024 * 1024 * 1024


def storage_url(credentials):
    return f"https://{storage_host(credentials.bucket)}{encode_object_path(credentials.object_key)}"


def upload_to_storage(
    credentials,
    payload,
    transport=None,
    content_type=None,
    policy=None,
    cancel=None,
    timeout=None,
):
    """PUT ``payload`` as the single object the credentials allow.

    The request is signed afresh on every attempt so each one carries a
    current timestamp. A cancel returns at once even mid-request.
    """
    if not credentials.bucket or not credentials.object_key:
        raise ConfigurationError("storage bucket and object are required")
    if not payload:
        raise ConfigurationError("storage upload payload is empty")
    if len(payload) > MAX_SINGLE_UPLOAD_BYTES:
        raise ConfigurationError(
            f"payload of {len(payload)} bytes exceeds the single upload limit"
        )
    owned = HTTPTransport() if transport is None else None
    transport = transport or owned
    url = storage_url(credentials)

    def send():
        authorization, headers = sign_storage_upload(
            credentials, payload, content_type=content_type
        )
        headers = dict(headers, Authorization=authorization)
        response = transport.request(
            "PUT", url, content=payload, headers=headers, timeout=timeout
        )
        if response.status_code in RETRYABLE_STATUSES:
            check_response(response)
        if not 200 <= response.status_code < 300:
            raise StorageUploadError(
                f"storage upload failed with status {response.status_code}: "
                f"{sanitize_error_body(response.content)}"
            )

    if cancel is None:
        attempt = send
    else:

        def attempt():
            return run_cancellable(send, cancel, name="storage-upload")

    try:
        execute_with_retry(attempt, policy, cancel=cancel)
    finally:
        if owned is not None:
            owned.close()
    logger.debug("Uploaded %d bytes to bucket %s", len(payload), credentials.bucket)


def upload_file_to_storage(credentials, path, **kwargs):
    size = os.path.getsize(path)
    if size > MAX_SINGLE_UPLOAD_BYTES:
        raise ConfigurationError(
            f"file of {size} bytes exceeds the single upload limit"
        )
    with open(path, "rb") as f:
        payload = f.read()
    upload_to_storage(credentials, payload, **kwargs)
