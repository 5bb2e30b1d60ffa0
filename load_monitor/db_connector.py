# load_monitor/db_connector.py

import os
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import oracledb
from load_monitor.config import config

logger = logging.getLogger("db-check")

# Ensure UTF-8 handling for Oracle Thin mode
os.environ["NLS_LANG"] = ".AL32UTF8"

# V$SQL.SQL_FULLTEXT is a CLOB; fetch it as a plain string
oracledb.defaults.fetch_lobs = False


@dataclass
class ConnectionDetails:
    """Ad hoc connection details; host/port/service take precedence over a connect string."""

    user: Optional[str] = None
    password: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    service_name: Optional[str] = None
    connection_string: Optional[str] = None

    @property
    def dsn(self) -> Optional[str]:
        if self.host and self.port and self.service_name:
            return f"{self.host}:{self.port}/{self.service_name}"
        return self.connection_string or None


class OracleQueryExecutor:
    """Runs parameterless queries on an async connection, rows keyed by uppercase column name."""

    def __init__(self, connection):
        self.conn = connection

    async def execute(self, query: str) -> List[Dict[str, Any]]:
        with self.conn.cursor() as cursor:
            await cursor.execute(query)
            columns = [desc[0].upper() for desc in cursor.description]
            rows = await cursor.fetchall()
        return [dict(zip(columns, row)) for row in rows]

    async def close(self) -> None:
        await self.conn.close()


class OracleConnector:
    async def connect(self, details: ConnectionDetails) -> OracleQueryExecutor:
        dsn = details.dsn
        if not dsn:
            raise ValueError("Connection string is missing or incomplete.")

        # Thin mode → cannot use encoding=
        connection = await oracledb.connect_async(
            user=details.user,
            password=details.password,
            dsn=dsn
        )
        logger.info(f"✅ Connected to {dsn} as {details.user}")
        return OracleQueryExecutor(connection)

    async def connect_preset(self, preset_name: str) -> OracleQueryExecutor:
        p = config.get_db_preset(preset_name)
        return await self.connect(ConnectionDetails(
            user=p.get("user"),
            password=p.get("password"),
            connection_string=p.get("dsn"),
        ))

    async def test_connection(self, preset_name: str) -> bool:
        try:
            executor = await self.connect_preset(preset_name)
            await executor.execute("SELECT 1 FROM dual")
            await executor.close()
            logger.info(f"✅ DB preset '{preset_name}' is reachable.")
            return True
        except Exception as e:
            logger.error(f"❌ DB preset '{preset_name}' unreachable: {e}")
            return False

oracle_connector = OracleConnector()
