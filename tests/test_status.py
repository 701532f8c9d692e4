import logging

import pytest

from mcsm_launcher.status import SuppressDisconnect, create_server
from mcsm_launcher.supervisor import Supervisor


@pytest.mark.asyncio
async def test_server_exposes_status_tools(tmp_path):
    server = create_server(Supervisor(str(tmp_path)), port=8911)

    tools = await server.list_tools()

    assert sorted(tool.name for tool in tools) == ["get_status"]


def _error_record(exc):
    try:
        raise exc
    except Exception as caught:
        return logging.LogRecord(
            "mcp.server.streamable_http_manager", logging.ERROR, __file__, 1,
            "Error in message router", None, (type(caught), caught, caught.__traceback__),
        )


def test_disconnect_traceback_is_downgraded():
    record = _error_record(RuntimeError("anyio.ClosedResourceError"))

    assert SuppressDisconnect().filter(record)
    assert record.levelno == logging.DEBUG
    assert record.exc_info is None
    assert record.getMessage() == "Client disconnected before response completed"


def test_other_errors_pass_through():
    record = _error_record(ValueError("bad request"))

    assert SuppressDisconnect().filter(record)
    assert record.levelno == logging.ERROR
    assert record.exc_info is not None
