# load_monitor/server.py
import os
import sys
import json
import signal
import logging
import importlib
import pkgutil
import warnings

from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse, PlainTextResponse
import uvicorn

from load_monitor import __version__
from load_monitor.config import config
from load_monitor.mcp_app import mcp
from load_monitor.db_connector import oracle_connector


# -------------------------------------------------------------
# Logging
# -------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger("server")

logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("fastmcp").setLevel(logging.WARNING)


class JSONHandler(logging.StreamHandler):
    def emit(self, record):
        sys.stdout.write(json.dumps({
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage()
        }) + "\n")


# Optional JSON log mode
if os.getenv("LOG_JSON") == "1":
    logging.getLogger().handlers = [JSONHandler()]


# -------------------------------------------------------------
# Graceful Shutdown
# -------------------------------------------------------------
def _graceful(*_):
    logger.info("🛑 Received shutdown signal. Shutting down gracefully.")
    sys.exit(0)


# -------------------------------------------------------------
# Tool Auto-discovery
# -------------------------------------------------------------
def import_submodules(pkg_name: str):
    """Auto-import all modules inside a package so their @mcp.tool decorators run."""
    pkg = importlib.import_module(pkg_name)
    for _, modname, ispkg in pkgutil.iter_modules(pkg.__path__):
        if not ispkg:
            full_name = f"{pkg_name}.{modname}"
            importlib.import_module(full_name)
            logger.info(f"📦 Auto-imported: {full_name}")


logger.info(f"🚀 MCP Server Starting: {config.server_name}")
import_submodules("load_monitor.tools")


# -------------------------------------------------------------
# Build ASGI app
# -------------------------------------------------------------
os.environ["PYTHONUNBUFFERED"] = "1"
warnings.filterwarnings("ignore", category=DeprecationWarning)

mcp_http_app = mcp.http_app()
app = Starlette(lifespan=mcp_http_app.lifespan)


# ---- Simple Endpoints ----
async def health(request):
    return PlainTextResponse("ok")


async def info(request):
    tools = await mcp.get_tools()
    return JSONResponse({
        "name": config.server_name,
        "tools": sorted(tools),
        "database_presets": sorted(config.database_presets),
    })


async def version(request):
    return JSONResponse({
        "server": config.server_name,
        "version": os.getenv("APP_VERSION", __version__),
        "python": sys.version,
    })


async def check_presets(request):
    results = {}
    for preset_name in config.database_presets:
        results[preset_name] = await oracle_connector.test_connection(preset_name)
    return JSONResponse(results)


# ---- Routes ----
app.add_route("/version", version, methods=["GET"])
app.add_route("/healthz", health, methods=["GET"])
app.add_route("/_info", info, methods=["GET"])
app.add_route("/_presets", check_presets, methods=["GET"])


# ---- CORS ----
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount FastMCP HTTP app
app.mount("/", mcp_http_app)


def main():
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful)

    logger.info(f"🌐 Listening on port: {config.server_port}")
    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=config.server_port,
        log_level=os.getenv("LOG_LEVEL", "info"),
    )


# -------------------------------------------------------------
# Run Server
# -------------------------------------------------------------
if __name__ == "__main__":
    main()
