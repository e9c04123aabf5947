import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from subsync.core.logging import RequestIdFilter, request_id_var
from subsync.core.middleware import RequestIdMiddleware


def make_record():
    return logging.LogRecord("subsync.test", logging.INFO, __file__, 1, "hello", None, None)


def test_records_outside_a_request_have_no_request_id():
    record = make_record()
    assert RequestIdFilter().filter(record) is True
    assert record.request_id is None


def test_request_id_is_bound_while_handling_a_request():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    seen = {}

    @app.get("/ping")
    async def ping():
        record = make_record()
        RequestIdFilter().filter(record)
        seen["request_id"] = record.request_id
        return {}

    r = TestClient(app).get("/ping", headers={"X-Request-Id": "rid-9"})

    assert r.headers["X-Request-Id"] == "rid-9"
    assert seen["request_id"] == "rid-9"
    assert request_id_var.get() is None
