"""Configuration for chronomem.

Settings are plain Pydantic models with a default for every knob.
``Settings.from_env()`` reads ``CHRONOMEM_*`` environment variables and
resolves object-storage credentials the same way for every component.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Vector query limits
DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 1000

# FIFO broker constraints
WRITE_QUEUE_NAME = "agent-temporal-grain-queue.fifo"
COST_VERIFICATION_QUEUE_NAME = "cost-verification-queue"
MAX_DEDUPLICATION_ID_LENGTH = 128

DEFAULT_S3_REGION = "eu-west-2"
DEFAULT_LOCAL_S3_ENDPOINT = "http://localhost:4568"
LOCAL_S3_ACCESS_KEY = "S3RVER"
LOCAL_S3_SECRET_KEY = "S3RVER"

DEFAULT_DATA_DIR = Path.home() / ".chronomem"
DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"
DEFAULT_EXTRACTION_MODEL = "mistral:7b"
DEFAULT_REQUEST_TIMEOUT = 60.0


class S3Settings(BaseModel):
    """Resolved object-storage connection parameters.

    Attributes:
        bucket: Bucket holding vector tables and graph snapshots.
        region: AWS region.
        access_key_id: Access key (local default when running against a test endpoint).
        secret_access_key: Secret key.
        session_token: Optional session token.
        endpoint: Custom endpoint URL; None means the AWS default.
        url_style: "path" or "vhost" addressing.
        is_local: True when talking to a local S3-compatible test server.
    """

    bucket: str = "chronomem-vectordb"
    region: str = DEFAULT_S3_REGION
    access_key_id: str = LOCAL_S3_ACCESS_KEY
    secret_access_key: str = LOCAL_S3_SECRET_KEY
    session_token: str | None = None
    endpoint: str | None = DEFAULT_LOCAL_S3_ENDPOINT
    url_style: str = "path"
    is_local: bool = True

    @property
    def use_ssl(self) -> bool:
        return not (self.endpoint or "").startswith("http://")


class Settings(BaseModel):
    """Top-level settings shared by all services."""

    environment: str = "development"
    s3: S3Settings = Field(default_factory=S3Settings)

    write_queue_url: str | None = None
    cost_verification_queue_url: str | None = None

    vector_root: Path = DEFAULT_DATA_DIR / "vectordb"
    duckdb_home: Path = DEFAULT_DATA_DIR / "duckdb"
    db_path: Path = DEFAULT_DATA_DIR / "chronomem.db"

    ollama_url: str = DEFAULT_OLLAMA_URL
    platform_api_key: str | None = None
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    extraction_model: str = DEFAULT_EXTRACTION_MODEL
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)

    graph_extensions: bool = True
    graph_conditional_writes: bool = False

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from environment variables.

        Args:
            env: Mapping to read instead of ``os.environ`` (used by tests).

        Returns:
            Fully resolved settings.
        """
        env = os.environ if env is None else env
        data_dir = Path(env.get("CHRONOMEM_DATA_DIR", str(DEFAULT_DATA_DIR)))

        return cls(
            environment=env.get("CHRONOMEM_ENV", "development"),
            s3=resolve_s3_settings(env),
            write_queue_url=env.get("CHRONOMEM_WRITE_QUEUE_URL"),
            cost_verification_queue_url=env.get("CHRONOMEM_COST_VERIFICATION_QUEUE_URL"),
            vector_root=Path(env.get("CHRONOMEM_VECTOR_ROOT", str(data_dir / "vectordb"))),
            duckdb_home=Path(env.get("CHRONOMEM_DUCKDB_HOME", str(data_dir / "duckdb"))),
            db_path=Path(env.get("CHRONOMEM_DB_PATH", str(data_dir / "chronomem.db"))),
            ollama_url=env.get("CHRONOMEM_OLLAMA_URL", DEFAULT_OLLAMA_URL),
            platform_api_key=env.get("CHRONOMEM_OLLAMA_API_KEY") or None,
            embedding_model=env.get("CHRONOMEM_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            extraction_model=env.get("CHRONOMEM_EXTRACTION_MODEL", DEFAULT_EXTRACTION_MODEL),
            request_timeout=float(
                env.get("CHRONOMEM_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)
            ),
            graph_extensions=_env_flag(env, "CHRONOMEM_GRAPH_EXTENSIONS", True),
            graph_conditional_writes=_env_flag(
                env, "CHRONOMEM_GRAPH_CONDITIONAL_WRITES", False
            ),
        )


def _env_flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def resolve_s3_settings(env: Mapping[str, str]) -> S3Settings:
    """Resolve object-storage credentials from the environment.

    The test environment, or any environment without a complete key pair,
    talks to a local S3-compatible server with fixed credentials and
    path-style addressing. Otherwise explicit keys are used, with the
    project-specific variables taking precedence over the ``AWS_*`` ones.

    Args:
        env: Environment mapping.

    Returns:
        Resolved S3 settings.
    """
    environment = env.get("CHRONOMEM_ENV")
    bucket = env.get("CHRONOMEM_S3_BUCKET", "chronomem-vectordb")
    own_key = env.get("CHRONOMEM_S3_ACCESS_KEY_ID")
    own_secret = env.get("CHRONOMEM_S3_SECRET_ACCESS_KEY")
    access_key_id = own_key or env.get("AWS_ACCESS_KEY_ID")
    secret_access_key = own_secret or env.get("AWS_SECRET_ACCESS_KEY")
    session_token = (
        env.get("CHRONOMEM_S3_SESSION_TOKEN")
        if own_key and own_secret
        else env.get("AWS_SESSION_TOKEN")
    )
    region = env.get("CHRONOMEM_S3_REGION") or env.get("AWS_REGION") or DEFAULT_S3_REGION
    custom_endpoint = env.get("CHRONOMEM_S3_ENDPOINT")

    if environment == "testing" or not access_key_id or not secret_access_key:
        endpoint = custom_endpoint or DEFAULT_LOCAL_S3_ENDPOINT
        logger.info(f"Resolved local S3 credentials (endpoint={endpoint})")
        return S3Settings(
            bucket=bucket,
            region=DEFAULT_S3_REGION,
            access_key_id=LOCAL_S3_ACCESS_KEY,
            secret_access_key=LOCAL_S3_SECRET_KEY,
            session_token=session_token,
            endpoint=endpoint,
            url_style="path",
            is_local=True,
        )

    is_local_endpoint = custom_endpoint is not None and (
        "localhost" in custom_endpoint or "127.0.0.1" in custom_endpoint
    )
    if environment == "production" and not custom_endpoint:
        endpoint: str | None = f"https://s3.{region}.amazonaws.com"
        url_style = "path"
    else:
        endpoint = custom_endpoint
        url_style = "path" if is_local_endpoint else "vhost"

    logger.info(f"Resolved AWS S3 credentials (region={region}, endpoint={endpoint or 'aws-default'})")
    return S3Settings(
        bucket=bucket,
        region=region,
        access_key_id=access_key_id,
        secret_access_key=secret_access_key,
        session_token=session_token,
        endpoint=endpoint,
        url_style=url_style,
        is_local=False,
    )
