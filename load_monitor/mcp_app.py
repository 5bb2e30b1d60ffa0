# load_monitor/mcp_app.py

from fastmcp import FastMCP
from load_monitor.config import config


# Single shared instance – everything else will import this
mcp = FastMCP(config.server_name)
