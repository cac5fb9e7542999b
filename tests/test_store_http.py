"""Tests for HttpRecordStore against a local aiohttp server."""

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from src.enrollment.config import EnrollmentConfig
from src.enrollment.errors import (
    PermanentStoreError,
    PreconditionFailedError,
    RecordNotFoundError,
    StoreAuthenticationError,
    StorePermissionError,
    TransientStoreError,
)
from src.enrollment.store.http import HttpRecordStore


class FakeBackend:
    """Minimal records API that logs requests and replays canned responses."""

    def __init__(self) -> None:
        self.requests: list[dict] = []
        self.responses: list[web.Response] = []
        self.app = web.Application()
        self.app.router.add_route("*", "/api/{tail:.*}", self.handle)

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.json() if request.can_read_body else None
        self.requests.append(
            {
                "method": request.method,
                "path": request.path,
                "auth": request.headers.get("Authorization"),
                "body": body,
            }
        )
        if self.responses:
            return self.responses.pop(0)
        return web.json_response({"_id": "L1", "ok": True})


@pytest_asyncio.fixture
async def backend():
    fake = FakeBackend()
    server = TestServer(fake.app)
    await server.start_server()
    fake.url = str(server.make_url("/api"))
    yield fake
    await server.close()


def _store(backend, **kwargs) -> HttpRecordStore:
    kwargs.setdefault("read_retry_wait_seconds", 0)
    return HttpRecordStore(backend.url, **kwargs)


class TestHttpRecordStore:
    @pytest.mark.asyncio
    async def test_get_sends_bearer_token(self, backend):
        store = _store(backend, token="secret")

        assert await store.get("/theory/L1") == {"_id": "L1", "ok": True}
        assert backend.requests == [
            {"method": "GET", "path": "/api/theory/L1", "auth": "Bearer secret", "body": None}
        ]

    @pytest.mark.asyncio
    async def test_anonymous_requests_have_no_auth_header(self, backend):
        await _store(backend).get("/student/S1")
        assert backend.requests[0]["auth"] is None

    @pytest.mark.asyncio
    async def test_patch_body_carries_filters_and_precondition(self, backend):
        store = _store(backend)
        await store.patch(
            "/student/S1",
            {"$set": {"enrollments.theoryLessons.$[elem].status": "inactive"}},
            array_filters=[{"elem.lessonId": "L1"}],
            precondition={"capacity.currentEnrollment": {"$lt": 10}},
            transaction="tx-1",
        )

        request = backend.requests[0]
        assert request["method"] == "PATCH"
        assert request["body"] == {
            "update": {"$set": {"enrollments.theoryLessons.$[elem].status": "inactive"}},
            "arrayFilters": [{"elem.lessonId": "L1"}],
            "transaction": "tx-1",
            "precondition": {"capacity.currentEnrollment": {"$lt": 10}},
        }

    @pytest.mark.asyncio
    async def test_patch_omits_absent_options(self, backend):
        await _store(backend).patch("/theory/L1", {"$inc": {"capacity.currentEnrollment": 1}})
        assert backend.requests[0]["body"] == {
            "update": {"$inc": {"capacity.currentEnrollment": 1}}
        }

    @pytest.mark.asyncio
    async def test_post(self, backend):
        await _store(backend).post("/system/errors", {"type": "rollback_failed"})
        assert backend.requests[0]["method"] == "POST"
        assert backend.requests[0]["body"] == {"type": "rollback_failed"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error_type",
        [
            (401, StoreAuthenticationError),
            (403, StorePermissionError),
            (404, RecordNotFoundError),
            (409, PreconditionFailedError),
            (412, PreconditionFailedError),
            (422, PermanentStoreError),
        ],
    )
    async def test_status_mapping(self, backend, status, error_type):
        backend.responses.append(web.json_response({"error": "nope"}, status=status))
        with pytest.raises(error_type):
            await _store(backend).patch("/theory/L1", {"$set": {"a": 1}})

    @pytest.mark.asyncio
    async def test_client_error_uses_server_message(self, backend):
        backend.responses.append(
            web.json_response({"message": "maxStudents must be >= 0"}, status=400)
        )
        with pytest.raises(PermanentStoreError, match="maxStudents must be >= 0"):
            await _store(backend).patch("/theory/L1", {"$set": {"a": 1}})

    @pytest.mark.asyncio
    async def test_get_retries_transient_errors(self, backend):
        backend.responses.extend(
            [web.Response(status=503, text="busy"), web.Response(status=502, text="bad gw")]
        )
        result = await _store(backend, read_retry_attempts=3).get("/theory/L1")

        assert result == {"_id": "L1", "ok": True}
        assert len(backend.requests) == 3

    @pytest.mark.asyncio
    async def test_get_gives_up_after_configured_attempts(self, backend):
        backend.responses.extend([web.Response(status=500) for _ in range(2)])
        with pytest.raises(TransientStoreError):
            await _store(backend, read_retry_attempts=2).get("/theory/L1")
        assert len(backend.requests) == 2

    @pytest.mark.asyncio
    async def test_writes_are_not_retried(self, backend):
        backend.responses.append(web.Response(status=503))
        with pytest.raises(TransientStoreError):
            await _store(backend, read_retry_attempts=3).patch(
                "/theory/L1", {"$inc": {"capacity.currentEnrollment": 1}}
            )
        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self, backend):
        backend.responses.append(web.json_response({}, status=404))
        with pytest.raises(RecordNotFoundError):
            await _store(backend, read_retry_attempts=3).get("/theory/missing")
        assert len(backend.requests) == 1

    @pytest.mark.asyncio
    async def test_connection_failure_is_transient(self, unused_tcp_port):
        store = HttpRecordStore(
            f"http://127.0.0.1:{unused_tcp_port}/api",
            read_retry_attempts=1,
            read_retry_wait_seconds=0,
        )
        with pytest.raises(TransientStoreError):
            await store.get("/theory/L1")


def test_from_config():
    config = EnrollmentConfig(
        records_api_url="http://backend:3001/api/",
        records_api_token="tok",
        request_timeout_seconds=5,
        read_retry_attempts=4,
    )
    store = HttpRecordStore.from_config(config)

    assert store.base_url == "http://backend:3001/api"
    assert store.token == "tok"
    assert store.timeout.total == 5
    assert store.read_retry_attempts == 4
