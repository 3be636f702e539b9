from asc_transfer import storage
from asc_transfer.cancel import CancelToken
from asc_transfer.errors import ConfigurationError
from asc_transfer.errors import OperationCancelled
from asc_transfer.errors import RetryLimitExceeded
from asc_transfer.errors import StorageUploadError
from asc_transfer.retry import RetryPolicy
from asc_transfer.signing import StorageCredentials
from asc_transfer.storage import storage_url
from asc_transfer.storage import upload_file_to_storage
from asc_transfer.storage import upload_to_storage
from asc_transfer.transport import HTTPTransport

import hashlib
import httpx
import pytest
import threading
import time


FAST = RetryPolicy(max_attempts=2, base_delay=0.01, max_delay=0.01)


@pytest.fixture
def credentials():
    return StorageCredentials(
        access_key_id="AKIDEXAMPLE",
        secret_access_key="secret",
        session_token="session",
        bucket="notary-submissions-prod",
        object_key="prod/AKIDEXAMPLE/My App.zip",
    )


class StorageServer:
    def __init__(self, *statuses, body=b""):
        self.statuses = list(statuses)
        self.body = body
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status, content=self.body)

    def transport(self):
        return HTTPTransport(client=httpx.Client(transport=httpx.MockTransport(self)))


class TestStorageURL:
    def test_virtual_hosted_style(self, credentials):
        assert storage_url(credentials) == (
            "https://notary-submissions-prod.s3.us-west-2.amazonaws.com"
            "/prod/AKIDEXAMPLE/My%20App.zip"
        )


class TestUploadToStorage:
    def test_signed_put(self, credentials):
        server = StorageServer()
        upload_to_storage(credentials, b"archive", transport=server.transport())

        (request,) = server.requests
        assert request.method == "PUT"
        assert request.url.host == "notary-submissions-prod.s3.us-west-2.amazonaws.com"
        assert request.url.raw_path == b"/prod/AKIDEXAMPLE/My%20App.zip"
        assert request.content == b"archive"
        assert request.headers["Authorization"].startswith("AWS4-HMAC-SHA256 ")
        assert request.headers["X-Amz-Content-Sha256"] == (
            hashlib.sha256(b"archive").hexdigest()
        )
        assert request.headers["X-Amz-Security-Token"] == "session"

    def test_throttling_retried(self, credentials):
        server = StorageServer(503, 200)
        upload_to_storage(
            credentials, b"archive", transport=server.transport(), policy=FAST
        )
        assert len(server.requests) == 2
        assert all("Authorization" in r.headers for r in server.requests)

    def test_throttling_exhausted(self, credentials):
        server = StorageServer(503, 503, 503)
        with pytest.raises(RetryLimitExceeded):
            upload_to_storage(
                credentials, b"archive", transport=server.transport(), policy=FAST
            )
        assert len(server.requests) == 3

    def test_rejection_not_retried(self, credentials):
        server = StorageServer(
            403, body=b"<Error><Code>AccessDenied</Code>\x07</Error>"
        )
        with pytest.raises(StorageUploadError) as exc_info:
            upload_to_storage(
                credentials, b"archive", transport=server.transport(), policy=FAST
            )
        message = str(exc_info.value)
        assert "status 403" in message
        assert "AccessDenied" in message
        assert "\x07" not in message
        assert len(server.requests) == 1

    def test_empty_payload_rejected(self, credentials):
        server = StorageServer()
        with pytest.raises(ConfigurationError, match="empty"):
            upload_to_storage(credentials, b"", transport=server.transport())
        assert server.requests == []

    def test_bucket_required(self):
        with pytest.raises(ConfigurationError, match="bucket and object"):
            upload_to_storage(StorageCredentials("AKID", "secret"), b"archive")

    def test_single_upload_limit(self, credentials, monkeypatch):
        monkeypatch.setattr(storage, "MAX_SINGLE_UPLOAD_BYTES", 4)
        with pytest.raises(ConfigurationError, match="single upload limit"):
            upload_to_storage(credentials, b"archive", transport=StorageServer().transport())

    def test_cancel_returns_while_request_blocked(self, credentials):
        release = threading.Event()
        server = StorageServer()

        def handler(request):
            release.wait(10)
            return server(request)

        transport = HTTPTransport(
            client=httpx.Client(transport=httpx.MockTransport(handler))
        )
        token = CancelToken()
        timer = threading.Timer(0.2, token.cancel)
        timer.start()
        start = time.monotonic()
        try:
            with pytest.raises(OperationCancelled):
                upload_to_storage(
                    credentials, b"archive", transport=transport, cancel=token
                )
            assert time.monotonic() - start < 2
        finally:
            timer.cancel()
            release.set()

    def test_default_transport_closed(self, credentials, monkeypatch):
        server = StorageServer()
        opened = []

        class TrackingTransport(HTTPTransport):
            def __init__(self):
                super().__init__(
                    client=httpx.Client(transport=httpx.MockTransport(server))
                )
                self.closed = False
                opened.append(self)

            def close(self):
                self.closed = True

        monkeypatch.setattr(storage, "HTTPTransport", TrackingTransport)
        upload_to_storage(credentials, b"archive")
        assert server.requests[0].content == b"archive"
        assert [t.closed for t in opened] == [True]


class TestUploadFileToStorage:
    def test_uploads_file_contents(self, credentials, tmp_path):
        path = tmp_path / "App.zip"
        path.write_bytes(b"zipped")
        server = StorageServer()
        upload_file_to_storage(credentials, str(path), transport=server.transport())
        assert server.requests[0].content == b"zipped"

    def test_file_over_limit(self, credentials, tmp_path, monkeypatch):
        monkeypatch.setattr(storage, "MAX_SINGLE_UPLOAD_BYTES", 4)
        path = tmp_path / "App.zip"
        path.write_bytes(b"zipped")
        with pytest.raises(ConfigurationError, match="single upload limit"):
            upload_file_to_storage(credentials, str(path))
