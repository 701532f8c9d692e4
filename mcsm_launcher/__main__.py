"""Start the MCSManager web and daemon processes and keep them paired.

Usage:
    python -m mcsm_launcher [--base-dir DIR] [--log-file PATH]
                            [--shutdown-grace SEC] [--failure-grace SEC]
                            [--status-port PORT]

Expects ``<base-dir>/web/app.py`` and ``<base-dir>/daemon/app.py``.
"""

import argparse
import asyncio
import logging
import sys

import uvicorn

from mcsm_launcher.config import Config
from mcsm_launcher.logsink import setup_logging
from mcsm_launcher.status import SuppressDisconnect, create_server
from mcsm_launcher.supervisor import Supervisor

log = logging.getLogger("mcsm_launcher")


async def _run(config: Config, supervisor: Supervisor) -> int:
    serve_task = None
    if config.status_port is not None:
        server = create_server(supervisor, config.status_port)
        uvi = uvicorn.Server(uvicorn.Config(
            server.streamable_http_app(),
            host="127.0.0.1", port=config.status_port, log_level="warning",
        ))
        # _serve() skips uvicorn's capture_signals(), which would replace
        # the supervisor's loop signal handlers.
        serve_task = asyncio.create_task(uvi._serve())

    try:
        return await supervisor.run()
    finally:
        if serve_task is not None:
            serve_task.cancel()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="MCSManager web + daemon launcher")
    parser.add_argument("--base-dir", help="Directory containing web/ and daemon/")
    parser.add_argument("--log-file", help="Combined log file (default: output.log)")
    parser.add_argument(
        "--shutdown-grace", type=float,
        help="Seconds to wait after a termination signal before exiting",
    )
    parser.add_argument(
        "--failure-grace", type=float,
        help="Seconds to wait after an unexpected child exit before exiting",
    )
    parser.add_argument("--status-port", type=int, help="Serve MCP status tools on this port")
    args = parser.parse_args(argv)

    try:
        config = Config.from_env().replace(
            base_dir=args.base_dir,
            log_file=args.log_file,
            shutdown_grace=args.shutdown_grace,
            failure_grace=args.failure_grace,
            status_port=args.status_port,
        )
    except ValueError as exc:
        parser.error(str(exc))

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [mcsm-launcher] %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("mcp.server.streamable_http_manager").addFilter(SuppressDisconnect())

    sink = setup_logging(config.log_file)
    supervisor = Supervisor(
        config.base_dir,
        shutdown_grace=config.shutdown_grace,
        failure_grace=config.failure_grace,
        sink=sink,
    )

    code = 1
    try:
        code = asyncio.run(_run(config, supervisor))
    finally:
        log.info("Launcher exiting, code: %s", code)
        sink.close()
    return code


if __name__ == "__main__":
    sys.exit(main())
