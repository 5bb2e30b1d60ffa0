"""
MCP Tools for Active Load Monitoring

Provides 4 MCP tools around the sampling core:

1. connect_database() - Open a connection from a preset or ad hoc details
2. get_active_load() - Poll active sessions, scored and ranked
3. disconnect_database() - Close a connection and drop its CPU baselines
4. list_connections() - Open connections and their last poll state

A client schedules get_active_load() on its own interval. After an error
result it should stop re-polling until the operator resumes; when
'connection_lost' is true it must reconnect first.

SECURITY MODEL:
- READ ONLY: Sampling queries SELECT from V$ views only
- NEVER EXECUTE: User SQL from V$SQL is classified and displayed, NEVER executed
"""

from datetime import datetime
from typing import Any, Dict, Optional
import logging

import oracledb

from load_monitor.mcp_app import mcp
from load_monitor.config import config
from load_monitor.db_connector import ConnectionDetails, oracle_connector
from load_monitor.monitoring import (
    ConnectionLostError,
    ConnectionNotFoundError,
    SamplerError,
    SamplerSettings,
    SamplingDriver,
    SessionFilter,
    SessionRegistry,
    check_sort_key,
    snapshot_view,
)

logger = logging.getLogger(__name__)

# Process-wide registry, shared by every tool call
session_registry = SessionRegistry()
sampler = SamplingDriver(session_registry, SamplerSettings.from_config(config))


def _error(message: str, **extra) -> Dict[str, Any]:
    return {
        'error': message,
        'timestamp': datetime.now().isoformat(),
        **extra,
    }


@mcp.tool(
    name="connect_database",
    description=(
        "Opens a monitoring connection to an Oracle database and returns a connection_id. "
        "Pass either a configured preset name, or host/port/service_name (or a full connection_string) "
        "with user and password. Use the returned connection_id with get_active_load()."
    ),
)
async def connect_database(
    preset: Optional[str] = None,
    user: Optional[str] = None,
    password: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    service_name: Optional[str] = None,
    connection_string: Optional[str] = None,
):
    logger.info(f"🔗 connect_database() called (preset={preset}, host={host})")

    try:
        if preset:
            executor = await oracle_connector.connect_preset(preset)
        else:
            executor = await oracle_connector.connect(ConnectionDetails(
                user=user,
                password=password,
                host=host,
                port=port,
                service_name=service_name,
                connection_string=connection_string,
            ))
    except (KeyError, ValueError, oracledb.Error) as e:
        logger.error(f"❌ Connection failed: {e}")
        return _error(str(e))

    connection_id = session_registry.register(executor, name=preset or host or connection_string)
    return {
        'connection_id': connection_id,
        'refresh_interval_sec': config.refresh_interval_sec,
    }


@mcp.tool(
    name="get_active_load",
    description=(
        "Samples the currently active sessions of a connected Oracle database. "
        "Each session gets its operation, main table, estimated MB touched, CPU % since the previous poll "
        "and an impact tier (LOW/MEDIUM/HIGH). Also returns a summary (session count, total MB, blocking locks, "
        "busiest table, instance CPU %) and the top 5 offenders. "
        "Optional filters: owner (substring), operation (SELECT/INSERT/UPDATE/DELETE/MERGE), min_duration (seconds), "
        "impact (LOW/MEDIUM/HIGH), table (substring). Sort with sort_by (e.g. duration_sec, est_mb, cpu_percent, score)."
    ),
)
async def get_active_load(
    connection_id: str,
    owner: str = "",
    operation: str = "",
    min_duration: float = 0,
    impact: str = "",
    table: str = "",
    sort_by: str = "duration_sec",
    descending: bool = True,
):
    logger.info(f"📊 get_active_load() called for {connection_id}")

    # A rejected request must not move the connection's CPU baselines
    try:
        check_sort_key(sort_by)
    except ValueError as e:
        return _error(str(e), connection_lost=False)

    try:
        snapshot = await sampler.poll(connection_id)
    except (ConnectionLostError, ConnectionNotFoundError) as e:
        return _error(str(e), connection_lost=True)
    except SamplerError as e:
        return _error(str(e), connection_lost=False)

    session_filter = SessionFilter(
        owner=owner,
        operation=operation,
        min_duration=min_duration,
        impact=impact,
        table=table,
    )
    return snapshot_view(snapshot, session_filter, sort_by=sort_by, descending=descending)


@mcp.tool(
    name="disconnect_database",
    description="Closes a monitoring connection and discards its CPU sampling baselines.",
)
async def disconnect_database(connection_id: str):
    logger.info(f"🔌 disconnect_database() called for {connection_id}")
    success = await session_registry.close(connection_id)
    return {'success': success}


@mcp.tool(
    name="list_connections",
    description="Lists open monitoring connections with their name and last poll state.",
)
async def list_connections():
    connections = []
    for connection_id in session_registry.ids():
        entry = session_registry.get(connection_id)
        connections.append({
            'connection_id': connection_id,
            'name': entry.name,
            'state': entry.state.value,
            'connected_at': datetime.fromtimestamp(entry.connected_at).isoformat(),
        })
    return {'connections': connections, 'count': len(connections)}
