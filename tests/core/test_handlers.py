"""Tests for exception handlers."""

import json
from unittest.mock import patch

from starlette.exceptions import HTTPException as StarletteHTTPException

from deployguard.core.exceptions import (
    DeployGuardError,
    PoolNotInitializedError,
)
from deployguard.core.handlers import (
    deploy_guard_error_handler,
    general_exception_handler,
    http_exception_handler,
)


class MockRequest:
    """Mock request for testing."""

    def __init__(self, request_id="test-123"):
        self.state = type("State", (), {"request_id": request_id})()
        self.url = type("URL", (), {"path": "/test/path"})()
        self.method = "GET"


class TestDeployGuardErrorHandler:
    """Test DeployGuardError handler."""

    async def test_basic_error(self):
        """Message, code and request id are in the envelope."""
        exc = DeployGuardError("Test error", status_code=400, error_code="TEST_ERROR")

        response = await deploy_guard_error_handler(MockRequest(), exc)

        assert response.status_code == 400
        body = json.loads(response.body)
        assert body == {
            "error": "Test error",
            "error_code": "TEST_ERROR",
            "request_id": "test-123",
        }

    async def test_with_details(self):
        exc = DeployGuardError("Invalid input", status_code=400, details={"field": "url"})

        response = await deploy_guard_error_handler(MockRequest(), exc)

        assert response.status_code == 400
        assert json.loads(response.body)["details"] == {"field": "url"}

    async def test_pool_not_initialized(self):
        """An unavailable database maps to 503."""
        response = await deploy_guard_error_handler(
            MockRequest(), PoolNotInitializedError()
        )

        assert response.status_code == 503
        body = json.loads(response.body)
        assert body["error_code"] == "POOL_NOT_INITIALIZED"


class TestHttpExceptionHandler:
    """Test HTTP exception handler."""

    async def test_with_detail(self):
        exc = StarletteHTTPException(status_code=404, detail="Not here")

        response = await http_exception_handler(MockRequest(), exc)

        assert response.status_code == 404
        body = json.loads(response.body)
        assert body["error"] == "Not here"
        assert body["error_code"] == "HTTP_404"


class TestGeneralExceptionHandler:
    """Test unexpected exception handler."""

    @patch("deployguard.core.handlers.capture_exception")
    async def test_internal_details_hidden(self, mock_capture):
        """Unexpected errors return a generic message and go to Sentry."""
        exc = RuntimeError("password=hunter2")

        response = await general_exception_handler(MockRequest(), exc)

        assert response.status_code == 500
        assert b"hunter2" not in response.body
        assert json.loads(response.body)["error_code"] == "INTERNAL_ERROR"
        mock_capture.assert_called_once()
