from asc_transfer import client as client_module
from asc_transfer.cancel import CancelToken
from asc_transfer.client import APIClient
from asc_transfer.errors import APIError
from asc_transfer.errors import OperationCancelled
from asc_transfer.errors import PaginationError
from asc_transfer.errors import RetryableError
from asc_transfer.responses import AppsResponse
from asc_transfer.retry import RetryPolicy
from asc_transfer.signing import AUDIENCE
from asc_transfer.transport import HTTPTransport
from cryptography.hazmat.primitives.asymmetric import ec

import httpx
import jwt
import logging
import pytest
import threading
import time


BASE = "https://api.example.com"
FAST = RetryPolicy(max_attempts=2, base_delay=0.01, max_delay=0.01)


@pytest.fixture(scope="module")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


class APIServer:
    def __init__(self, handler):
        self.handler = handler
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return self.handler(request)


@pytest.fixture
def make_client(ec_key):
    def factory(handler):
        server = APIServer(handler)
        client = APIClient(
            "ABC123",
            "issuer-uuid",
            ec_key,
            transport=HTTPTransport(
                client=httpx.Client(transport=httpx.MockTransport(server))
            ),
            base_url=BASE,
            policy=FAST,
        )
        return client, server

    return factory


def _apps_page(ids, next_link=None):
    links = {"self": f"{BASE}/v1/apps"}
    if next_link:
        links["next"] = next_link
    return {"data": [{"type": "apps", "id": i} for i in ids], "links": links}


class TestRequest:
    def test_get_sends_bearer_token(self, make_client, ec_key):
        client, server = make_client(lambda r: httpx.Response(200, json={"data": []}))
        assert client.get("/v1/apps") == {"data": []}

        (request,) = server.requests
        assert str(request.url) == f"{BASE}/v1/apps"
        scheme, token = request.headers["Authorization"].split(" ", 1)
        assert scheme == "Bearer"
        claims = jwt.decode(
            token, ec_key.public_key(), algorithms=["ES256"], audience=AUDIENCE
        )
        assert claims["iss"] == "issuer-uuid"

    def test_get_retried_with_fresh_token(self, make_client):
        responses = [httpx.Response(503), httpx.Response(200, json={"data": []})]
        client, server = make_client(lambda r: responses.pop(0))
        assert client.get("/v1/apps") == {"data": []}
        assert len(server.requests) == 2
        assert all(r.headers["Authorization"].startswith("Bearer ") for r in server.requests)

    def test_post_not_retried(self, make_client):
        client, server = make_client(lambda r: httpx.Response(503))
        with pytest.raises(RetryableError):
            client.request("POST", "/v1/buildUploads")
        assert len(server.requests) == 1

    def test_empty_body(self, make_client):
        client, _server = make_client(lambda r: httpx.Response(204))
        assert client.request("DELETE", "/v1/betaTesters/1") is None

    def test_api_error(self, make_client):
        body = {"errors": [{"code": "FORBIDDEN", "title": "Forbidden", "detail": "no"}]}
        client, server = make_client(lambda r: httpx.Response(403, json=body))
        with pytest.raises(APIError, match="Forbidden: no") as exc_info:
            client.get("/v1/apps")
        assert exc_info.value.status_code == 403
        assert len(server.requests) == 1


class TestPaginateAll:
    def test_aggregates_every_page(self, make_client):
        def handler(request):
            if request.url.params.get("cursor") == "2":
                return httpx.Response(200, json=_apps_page(["3"]))
            return httpx.Response(
                200, json=_apps_page(["1", "2"], next_link=f"{BASE}/v1/apps?cursor=2")
            )

        client, server = make_client(handler)
        result = client.paginate_all("/v1/apps", AppsResponse)
        assert isinstance(result, AppsResponse)
        assert [item["id"] for item in result.data] == ["1", "2", "3"]
        assert result.next_link == ""
        assert len(server.requests) == 2

    def test_foreign_next_link_rejected(self, make_client):
        page = _apps_page(["1"], next_link="https://evil.example.net/v1/apps?cursor=2")
        client, server = make_client(lambda r: httpx.Response(200, json=page))
        with pytest.raises(PaginationError, match="page 2: .*untrusted host"):
            client.paginate_all("/v1/apps", AppsResponse)
        assert len(server.requests) == 1

    def test_cancel_returns_while_page_blocked(self, make_client):
        release = threading.Event()

        def handler(request):
            if request.url.params.get("cursor") == "2":
                release.wait(10)
                return httpx.Response(200, json=_apps_page(["3"]))
            return httpx.Response(
                200, json=_apps_page(["1"], next_link=f"{BASE}/v1/apps?cursor=2")
            )

        client, server = make_client(handler)
        token = CancelToken()
        timer = threading.Timer(0.2, token.cancel)
        timer.start()
        start = time.monotonic()
        try:
            with pytest.raises(OperationCancelled):
                client.paginate_all("/v1/apps", AppsResponse, cancel=token)
            assert time.monotonic() - start < 2
            assert len(server.requests) == 2
        finally:
            timer.cancel()
            release.set()


class TestClose:
    def test_owned_transport_closed(self, ec_key, monkeypatch):
        opened = []

        class TrackingTransport(HTTPTransport):
            def __init__(self):
                super().__init__(
                    client=httpx.Client(
                        transport=httpx.MockTransport(lambda r: httpx.Response(200))
                    )
                )
                self.closed = False
                opened.append(self)

            def close(self):
                self.closed = True

        monkeypatch.setattr(client_module, "HTTPTransport", TrackingTransport)
        with APIClient("ABC123", "issuer-uuid", ec_key, base_url=BASE) as client:
            assert client.get("/v1/apps") is None
            assert [t.closed for t in opened] == [False]
        assert [t.closed for t in opened] == [True]

    def test_supplied_transport_left_open(self, ec_key):
        http_client = httpx.Client(
            transport=httpx.MockTransport(lambda r: httpx.Response(200))
        )
        with APIClient(
            "ABC123",
            "issuer-uuid",
            ec_key,
            transport=HTTPTransport(client=http_client),
            base_url=BASE,
        ):
            pass
        assert not http_client.is_closed


class TestBaseURL:
    def test_plain_http_warns(self, ec_key, caplog):
        transport = HTTPTransport(
            client=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        )
        with caplog.at_level(logging.WARNING, logger="asc_transfer.client"):
            APIClient(
                "ABC123",
                "issuer-uuid",
                ec_key,
                transport=transport,
                base_url="http://localhost:8080/",
            )
        assert "not https" in caplog.text

    def test_relative_and_absolute_paths(self, make_client):
        client, server = make_client(lambda r: httpx.Response(200, json={}))
        client.get("/v1/apps")
        client.get(f"{BASE}/v1/builds")
        assert [str(r.url) for r in server.requests] == [
            f"{BASE}/v1/apps",
            f"{BASE}/v1/builds",
        ]
