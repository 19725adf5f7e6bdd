import asyncio
from types import SimpleNamespace

import pytest

from followcheck.middleware.errors import ErrorMiddleware


def test_error_is_logged_and_reraised(caplog):
    async def handler(event, data):
        raise RuntimeError("handler blew up")

    with pytest.raises(RuntimeError, match="blew up"):
        asyncio.run(ErrorMiddleware()(handler, SimpleNamespace(), {}))
    assert "Unhandled error" in caplog.text


def test_success_passes_through():
    async def handler(event, data):
        return data["x"]

    assert asyncio.run(ErrorMiddleware()(handler, SimpleNamespace(), {"x": 3})) == 3
