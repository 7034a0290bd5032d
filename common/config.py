"""
Replication Configuration
=========================

Typed configuration for a replication run.

Values are layered, later layers winning:
1. JSON task settings file (same shape as the ingestion task_settings.json)
2. Environment variables (AWS_REGION, AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY)
3. CLI flags, applied by the job runner with `dataclasses.replace`

The resulting ReplicationConfig is passed explicitly into every component;
nothing reads the environment after startup.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .utils import read_config

DEFAULT_NAMESPACE = "public"
DEFAULT_DELIMITER = "|"
DEFAULT_STAGING_PREFIX = "tmp_refresh_table_"
MAINTENANCE_SCOPES = ("database", "tables")


@dataclass
class SourceConfig:
    """Connection settings for the PostgreSQL source."""
    host: str = "localhost"
    port: int = 5432
    database: str = ""
    username: str = ""
    password: str = ""
    sslmode: str = "require"
    namespace: str = DEFAULT_NAMESPACE

    @classmethod
    def from_dict(cls, raw: Dict) -> "SourceConfig":
        return cls(
            host=raw.get("host", "localhost"),
            port=int(raw.get("port", 5432)),
            database=raw.get("database", ""),
            username=raw.get("username", ""),
            password=raw.get("password", ""),
            sslmode=raw.get("sslmode", "require"),
            namespace=raw.get("namespace", DEFAULT_NAMESPACE),
        )


@dataclass
class WarehouseConfig:
    """Connection settings for the Redshift warehouse."""
    host: str = "localhost"
    port: int = 5439
    database: str = ""
    username: str = ""
    password: str = ""
    connect_timeout: int = 10

    @classmethod
    def from_dict(cls, raw: Dict) -> "WarehouseConfig":
        return cls(
            host=raw.get("host", "localhost"),
            port=int(raw.get("port", 5439)),
            database=raw.get("database", ""),
            username=raw.get("username", ""),
            password=raw.get("password", ""),
            connect_timeout=int(raw.get("connect_timeout", 10)),
        )


@dataclass
class ObjectStoreConfig:
    """S3-compatible object store settings."""
    endpoint: str = "s3.amazonaws.com"
    access_key: str = ""
    secret_key: str = ""
    secure: bool = True
    region: Optional[str] = None

    def as_client_config(self) -> Dict:
        return {
            "endpoint": self.endpoint,
            "access_key": self.access_key,
            "secret_key": self.secret_key,
            "secure": self.secure,
            "region": self.region,
        }


@dataclass(frozen=True)
class S3Credentials:
    """Key pair the warehouse uses to read staged files."""
    access_key_id: str
    secret_access_key: str

    def __repr__(self):
        return f"S3Credentials(access_key_id={self.access_key_id!r}, secret_access_key='****')"


@dataclass
class RefreshSettings:
    """Knobs for the destination refresh phase."""
    staging_prefix: str = DEFAULT_STAGING_PREFIX
    maintenance_scope: str = "database"
    credentials: Optional[S3Credentials] = field(default=None, repr=False)
    verify_staged_files: bool = True


@dataclass
class ReplicationConfig:
    """Everything one replication run needs."""
    tables: List[str] = field(default_factory=list)
    namespace: str = DEFAULT_NAMESPACE
    stage_prefix: str = ""
    delimiter: str = DEFAULT_DELIMITER
    region: Optional[str] = None
    dump_source: bool = True
    refresh_destination: bool = True
    source: SourceConfig = field(default_factory=SourceConfig)
    warehouse: WarehouseConfig = field(default_factory=WarehouseConfig)
    object_store: ObjectStoreConfig = field(default_factory=ObjectStoreConfig)
    refresh: RefreshSettings = field(default_factory=RefreshSettings)
    table_hints: Dict[str, Dict] = field(default_factory=dict)
    log_level: str = "INFO"
    log_json: bool = False
    metrics_backend: str = "memory"
    pushgateway_url: Optional[str] = None

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Dict] = None,
        env: Optional[Mapping[str, str]] = None
    ) -> "ReplicationConfig":
        """
        Build a config from a parsed task settings dict and an environment.

        Args:
            settings: Parsed task settings (see load_task_settings); may be empty
            env: Environment mapping, os.environ when omitted

        Returns:
            ReplicationConfig
        """
        settings = settings or {}
        env = os.environ if env is None else env

        task = settings.get("task_settings", {})
        logging_settings = task.get("logging", {})
        metrics_settings = task.get("metrics", {})
        store_raw = settings.get("object_store", {}).get("connection", {})

        access_key = env.get("AWS_ACCESS_KEY_ID", "")
        secret_key = env.get("AWS_SECRET_ACCESS_KEY", "")
        region = env.get("AWS_REGION") or task.get("region")

        credentials = None
        if access_key and secret_key:
            credentials = S3Credentials(access_key, secret_key)

        object_store = ObjectStoreConfig(
            endpoint=store_raw.get("endpoint", "s3.amazonaws.com"),
            access_key=store_raw.get("access_key") or access_key,
            secret_key=store_raw.get("secret_key") or secret_key,
            secure=store_raw.get("secure", True),
            region=store_raw.get("region") or region,
        )

        return cls(
            tables=list(settings.get("tables", [])),
            namespace=task.get("namespace", DEFAULT_NAMESPACE),
            stage_prefix=task.get("stage_prefix", ""),
            delimiter=task.get("delimiter", DEFAULT_DELIMITER),
            region=region,
            dump_source=task.get("dump_source", True),
            refresh_destination=task.get("refresh_destination", True),
            source=SourceConfig.from_dict(settings.get("source", {}).get("connection", {})),
            warehouse=WarehouseConfig.from_dict(settings.get("target", {}).get("connection", {})),
            object_store=object_store,
            refresh=RefreshSettings(
                staging_prefix=task.get("staging_prefix", DEFAULT_STAGING_PREFIX),
                maintenance_scope=task.get("maintenance_scope", "database"),
                credentials=credentials,
                verify_staged_files=task.get("verify_staged_files", True),
            ),
            table_hints=settings.get("table_hints", {}),
            log_level=logging_settings.get("level", "INFO"),
            log_json=logging_settings.get("json", False),
            metrics_backend=metrics_settings.get("backend", "memory"),
            pushgateway_url=metrics_settings.get("pushgateway_url"),
        )

    def validate(self):
        """
        Check the values a run cannot start without.

        Raises:
            ValueError: describing every problem found
        """
        problems = []
        if not self.tables:
            problems.append("no tables given")
        if not self.stage_prefix:
            problems.append("stage prefix is required")
        if len(self.delimiter) != 1:
            problems.append(f"delimiter must be a single character, got {self.delimiter!r}")
        if self.refresh_destination and not self.region:
            problems.append("region is required to refresh the destination (set AWS_REGION)")
        if self.refresh.maintenance_scope not in MAINTENANCE_SCOPES:
            problems.append(f"maintenance scope must be one of {MAINTENANCE_SCOPES}")
        if not self.dump_source and not self.refresh_destination:
            problems.append("nothing to do: both dump and refresh phases are disabled")
        if problems:
            raise ValueError("invalid configuration: " + "; ".join(problems))


def load_task_settings(path: Optional[str]) -> Dict:
    """Load the JSON task settings file, or an empty dict when no path is given."""
    if not path:
        return {}
    return read_config(path)
