"""Database connection manager with pooling and health checks.

Manages PostgreSQL connections for the durable cache tier and the
retention record store:
- Connection pooling (psycopg2 ThreadedConnectionPool)
- Server-side statement timeout so no store call blocks indefinitely
- Health checks for readiness probes
- Secrets Manager integration for credentials
"""
import json
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

import psycopg2
from psycopg2 import pool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Credentials come from AWS Secrets Manager in production,
    or from environment variables in development.
    """
    host: str
    port: int = 5432
    database: str = "eduvault"
    username: str = ""
    password: str = ""
    min_connections: int = 2
    max_connections: int = 10
    connect_timeout: int = 10
    statement_timeout_ms: int = 2000
    ssl_mode: str = "require"

    def __post_init__(self):
        if self.min_connections < 1 or self.max_connections < self.min_connections:
            raise ValueError(
                f"Invalid pool bounds: min={self.min_connections}, max={self.max_connections}"
            )
        if self.statement_timeout_ms <= 0:
            raise ValueError("statement_timeout_ms must be positive")

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Create config from environment variables.

        Environment variables:
            DB_HOST: Database host
            DB_PORT: Database port (default 5432)
            DB_NAME: Database name (default eduvault)
            DB_USER: Database username
            DB_PASSWORD: Database password
            DB_MIN_CONN: Minimum pool connections (default 2)
            DB_MAX_CONN: Maximum pool connections (default 10)
            DB_STATEMENT_TIMEOUT_MS: Per-statement timeout (default 2000)
            DB_SSL_MODE: SSL mode (default require)
        """
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "eduvault"),
            username=os.getenv("DB_USER", ""),
            password=os.getenv("DB_PASSWORD", ""),
            min_connections=int(os.getenv("DB_MIN_CONN", "2")),
            max_connections=int(os.getenv("DB_MAX_CONN", "10")),
            statement_timeout_ms=int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "2000")),
            ssl_mode=os.getenv("DB_SSL_MODE", "require"),
        )

    @classmethod
    def from_secrets_manager(cls, secret_arn: str, region: str = "us-east-1") -> "DatabaseConfig":
        """Load config from AWS Secrets Manager.

        Args:
            secret_arn: ARN of the secret containing credentials
            region: AWS region

        Returns:
            DatabaseConfig with credentials from Secrets Manager
        """
        import boto3

        try:
            client = boto3.client("secretsmanager", region_name=region)
            response = client.get_secret_value(SecretId=secret_arn)
            secret = json.loads(response["SecretString"])
        except Exception as e:
            logger.error(
                "SECRETS_MANAGER_LOAD_FAILED",
                extra={"error": str(e), "secret_arn": secret_arn}
            )
            raise

        return cls(
            host=secret.get("host", os.getenv("DB_HOST", "localhost")),
            port=int(secret.get("port", os.getenv("DB_PORT", "5432"))),
            database=secret.get("dbname", os.getenv("DB_NAME", "eduvault")),
            username=secret.get("username", ""),
            password=secret.get("password", ""),
        )


class ConnectionManager:
    """Manages pooled PostgreSQL connections.

    Created once at process start and shared by reference between the
    cache backend and the record store; closed at shutdown.
    """

    def __init__(self, config: DatabaseConfig):
        """Initialize connection manager.

        Args:
            config: Database configuration
        """
        self.config = config
        self._pool: Optional[pool.ThreadedConnectionPool] = None
        self._initialized = False

        logger.info(
            "CONNECTION_MANAGER_CREATED",
            extra={
                "host": config.host,
                "database": config.database,
                "min_connections": config.min_connections,
                "max_connections": config.max_connections,
            }
        )

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Create the connection pool. Call during application startup."""
        if self._initialized:
            return

        try:
            self._pool = pool.ThreadedConnectionPool(
                minconn=self.config.min_connections,
                maxconn=self.config.max_connections,
                host=self.config.host,
                port=self.config.port,
                database=self.config.database,
                user=self.config.username,
                password=self.config.password,
                connect_timeout=self.config.connect_timeout,
                sslmode=self.config.ssl_mode,
                options=f"-c statement_timeout={self.config.statement_timeout_ms}",
            )
        except psycopg2.Error as e:
            logger.error(
                "CONNECTION_POOL_INIT_FAILED",
                extra={"error": str(e), "host": self.config.host}
            )
            raise

        self._initialized = True
        logger.info(
            "CONNECTION_POOL_INITIALIZED",
            extra={
                "host": self.config.host,
                "database": self.config.database,
                "statement_timeout_ms": self.config.statement_timeout_ms,
            }
        )

    @contextmanager
    def get_connection(self):
        """Borrow a connection from the pool.

        Usage:
            with manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")

        Yields:
            Database connection
        """
        if not self._initialized:
            self.initialize()

        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    def health_check(self) -> Dict[str, Any]:
        """Check database connectivity.

        Returns:
            Dictionary with health status
        """
        if not self._initialized:
            return {
                "status": "not_initialized",
                "healthy": False,
            }

        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()
        except psycopg2.Error as e:
            logger.error(
                "DATABASE_HEALTH_CHECK_FAILED",
                extra={"error": str(e)}
            )
            return {
                "status": "error",
                "healthy": False,
                "error": str(e),
            }

        return {
            "status": "connected",
            "healthy": True,
            "host": self.config.host,
            "database": self.config.database,
        }

    def close(self) -> None:
        """Close all pooled connections. Call during application shutdown."""
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("CONNECTION_POOL_CLOSED")

        self._initialized = False
