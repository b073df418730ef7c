"""
Unit tests for access logging.
"""

import json
import logging

import pytest

from bpserver.middleware.logging import AccessLogger
from bpserver.http.response import ResponseBuilder, too_many_requests

from conftest import make_request


@pytest.fixture
def request_with_query():
    request = make_request(
        path="/",
        headers={"User-Agent": "curl/8.0"},
        transport="https",
    )
    request.query_params = {"debug": ["1"], "tag": ["a", "b"]}
    return request


class TestAccessLogger:
    """Tests for AccessLogger."""

    def test_entry_fields(self, request_with_query):
        response = ResponseBuilder().text("Hello, World!\n").build()

        entry = AccessLogger().build_entry(request_with_query, response, 1.234)

        assert entry.request_id == request_with_query.request_id
        assert entry.query == "debug=1&tag=a&tag=b"
        assert entry.transport == "https"
        assert entry.user_agent == "curl/8.0"
        assert entry.status_code == 200
        assert entry.content_length == 14
        assert entry.to_dict()["duration_ms"] == 1.23

    def test_text_line(self, caplog):
        request = make_request(client_ip="192.168.1.7")

        with caplog.at_level(logging.INFO, logger="bpserver.access"):
            AccessLogger()(request, too_many_requests(60), 0.5)

        line = caplog.records[-1].getMessage()
        assert line.startswith("192.168.1.7 - - [")
        assert '"GET /" 429' in line
        assert line.endswith(f"http {request.request_id}")

    def test_json_line(self, caplog):
        request = make_request(method="POST")

        with caplog.at_level(logging.INFO, logger="bpserver.access"):
            AccessLogger(log_format="json")(request, ResponseBuilder().build(), 2.0)

        data = json.loads(caplog.records[-1].getMessage())
        assert data["method"] == "POST"
        assert data["status_code"] == 200
        assert data["user_agent"] == "-"

    def test_skip_paths(self, caplog):
        with caplog.at_level(logging.INFO, logger="bpserver.access"):
            AccessLogger(skip_paths=["/health"])(
                make_request(path="/health"), ResponseBuilder().build(), 0.1,
            )

        assert not [r for r in caplog.records if r.name == "bpserver.access"]

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            AccessLogger(log_format="xml")
