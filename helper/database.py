"""
PostgreSQL connection helper for the snapshot store.

One psycopg connection per Database. Statements run inside ``transaction()``,
which commits on success and rolls back and raises PipelineError on failure.
"""

import os
from contextlib import contextmanager
from dataclasses import dataclass, fields
from typing import Any, Dict, Iterator, Optional

import psycopg
from psycopg import Connection, Cursor

from .error import PipelineError
from .logging import PipelineLogger, get_logger

ENV_PREFIX = "PIPELINER_DB_"
APPLICATION_NAME = "pipeliner"


@dataclass
class DatabaseConfiguration:
    """
    Connection settings of the snapshot database.
    """

    host: str = "localhost"
    port: int = 5432
    database: str = "pipeliner"
    username: str = "postgres"
    password: str = ""
    schema: str = "public"
    sslmode: str = "require"
    connect_timeout: int = 10
    with_table_drop: bool = False

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "DatabaseConfiguration":
        """
        Create configuration from environment variables.

        Every field is read from ``<prefix><FIELD>``, for example
        PIPELINER_DB_HOST or PIPELINER_DB_WITH_TABLE_DROP. Unset variables
        keep the field default.

        :raises ValueError: If host, database, username or schema is empty.
        """
        values: Dict[str, Any] = {}
        for item in fields(cls):
            raw = os.getenv(f"{prefix}{item.name.upper()}")
            if raw is None:
                continue
            if item.type in (bool, "bool"):
                values[item.name] = raw.lower() == "true"
            elif item.type in (int, "int"):
                values[item.name] = int(raw)
            else:
                values[item.name] = raw

        config = cls(**values)
        empty = [
            f"{prefix}{name.upper()}"
            for name in ("host", "database", "username", "schema")
            if not str(getattr(config, name)).strip()
        ]
        if empty:
            raise ValueError(f"{', '.join(empty)} must not be empty")
        return config

    def connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for psycopg.connect."""
        return {
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
            "user": self.username,
            "password": self.password,
            "sslmode": self.sslmode,
            "connect_timeout": self.connect_timeout,
            "application_name": APPLICATION_NAME,
            "options": f"-c search_path={self.schema}",
        }


class Database:
    """
    Wrapper around one psycopg connection.
    """

    def __init__(
        self,
        name: str,
        config: Optional[DatabaseConfiguration] = None,
        logger: Optional[PipelineLogger] = None,
        auto_connect: bool = True,
    ):
        self.name = name
        self.config = config
        self.logger = logger or get_logger(__name__)
        self.instance: Optional[Connection] = None

        if config and auto_connect:
            self.connect()

    @property
    def connected(self) -> bool:
        return self.instance is not None and not self.instance.closed

    def connect(self) -> None:
        """
        Open the connection and verify it with a round trip.

        :raises PipelineError: If the configuration is missing or the
            connection fails.
        """
        if not self.config:
            raise PipelineError(f"Database {self.name} has no configuration")

        try:
            connection = psycopg.connect(
                autocommit=False, **self.config.connection_kwargs()
            )
            connection.execute("SELECT 1")
            connection.commit()
        except psycopg.Error as e:
            raise PipelineError(f"Failed to connect to database {self.name}", e)

        self.instance = connection
        self.logger.info(
            "Connected to database", name=self.name, database=self.config.database
        )

    @contextmanager
    def transaction(self, description: str) -> Iterator[Cursor]:
        """
        Run statements in a transaction.

        :param description: Names the work in the raised error.
        :raises PipelineError: If there is no connection or a statement fails.
        """
        if not self.connected:
            raise PipelineError(f"Database {self.name} is not connected")

        try:
            with self.instance.cursor() as cur:
                yield cur
            self.instance.commit()
        except psycopg.Error as e:
            self.instance.rollback()
            raise PipelineError(f"Failed to {description}", e)

    def table_exists(self, table_name: str) -> bool:
        with self.transaction(f"check table {table_name}") as cur:
            cur.execute(
                """
                SELECT EXISTS (
                    SELECT 1 FROM information_schema.tables
                    WHERE table_schema = current_schema() AND table_name = %s
                );
                """,
                (table_name,),
            )
            row = cur.fetchone()
        return bool(row and row[0])

    def health(self) -> Dict[str, str]:
        """Report whether the connection answers a round trip."""
        if not self.connected:
            return {"status": "down", "error": "No database connection"}

        try:
            with self.transaction("run health check") as cur:
                cur.execute("SELECT 1")
        except PipelineError as e:
            self.logger.warning("Database health check failed", error=e)
            return {"status": "down", "error": str(e)}

        return {
            "status": "up",
            "server_version": str(self.instance.info.server_version),
            "backend_pid": str(self.instance.info.backend_pid),
        }

    def close(self) -> None:
        if self.instance is not None:
            self.instance.close()
            self.instance = None
            self.logger.info("Database connection closed", name=self.name)


def new_database(
    name: str,
    config: DatabaseConfiguration,
    logger: Optional[PipelineLogger] = None,
    auto_connect: bool = True,
) -> Database:
    return Database(name, config, logger, auto_connect)


def new_database_from_env(
    name: str = "pipeliner",
    logger: Optional[PipelineLogger] = None,
    auto_connect: bool = False,
) -> Database:
    """
    Create a Database from the PIPELINER_DB_* variables.
    """
    return Database(name, DatabaseConfiguration.from_env(), logger, auto_connect)
