from __future__ import annotations

import atexit
import logging

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from transcriber.config import load_settings
from transcriber.mcp_tools import ToolRegistry
from transcriber.runtime import Transcriber

logger = logging.getLogger(__name__)


def create_app(runtime: Transcriber) -> FastMCP:
    mcp = FastMCP(name="transcriber")

    tools = ToolRegistry(runtime)
    tools.register(mcp)

    @mcp.custom_route(runtime.settings.health_path, methods=["GET"])
    async def health(_: Request) -> JSONResponse:
        cached = [info.identifier for info in runtime.list_models() if info.cached]
        return JSONResponse(
            {
                "ok": True,
                "cache_dir": str(runtime.settings.cache_dir),
                "cached_models": cached,
                "gpu_available": runtime.settings.gpu_available,
                "mcp_path": runtime.settings.mcp_path,
            }
        )

    return mcp


def cli() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    settings = load_settings()
    runtime = Transcriber(settings)
    atexit.register(runtime.close)

    app = create_app(runtime)
    logger.info("Starting MCP server on %s:%s%s", settings.host, settings.port, settings.mcp_path)
    app.run(
        transport="http",
        host=settings.host,
        port=settings.port,
        path=settings.mcp_path,
    )


if __name__ == "__main__":
    cli()
