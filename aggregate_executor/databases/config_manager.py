import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from aggregate_executor.databases.types import CollectionScope, DocumentStoreType
from aggregate_executor.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path(__file__).parent / "configs"
CONFIG_DIR_ENV = "AGGREGATE_CONFIG_DIR"
CONNECTION_STRING_ENV_PREFIX = "ConnectionStrings__"

_ATTRIBUTE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


@dataclass(frozen=True)
class AggregateDimension:
    """One aggregate endpoint: which document attribute it filters on and how it is exposed."""
    name: str
    attribute: str          # Document attribute compared against the filter value
    query_parameter: str    # HTTP query parameter carrying the filter value
    route: str
    is_partition_key: bool = True

    def __post_init__(self):
        if not _ATTRIBUTE_PATTERN.match(self.attribute or ""):
            raise ConfigurationError(f"Invalid attribute name '{self.attribute}' for dimension '{self.name}'")
        if not self.query_parameter:
            raise ConfigurationError(f"Dimension '{self.name}' needs a query_parameter")


@dataclass(frozen=True)
class LoaderConfig:
    batch_count: int = 10
    documents_per_batch: int = 1000
    max_batch_attempts: int = 5


@dataclass(frozen=True)
class AppConfig:
    """Everything the service needs at startup, resolved once."""
    store_type: DocumentStoreType
    collection: CollectionScope
    connection_string_name: str
    connection_string: Optional[str] = field(repr=False)
    page_size: int = 50
    dimensions: Tuple[AggregateDimension, ...] = ()
    loader: LoaderConfig = field(default_factory=LoaderConfig)
    handler_config: Dict[str, Any] = field(default_factory=dict, repr=False)

    def dimension(self, name: str) -> AggregateDimension:
        for dimension in self.dimensions:
            if dimension.name == name:
                return dimension
        raise ConfigurationError(f"Unknown aggregate dimension '{name}'")


class ConfigurationManager:

    def __init__(self, config_dir: Optional[str] = None):
        self.config_dir = Path(config_dir or os.environ.get(CONFIG_DIR_ENV) or DEFAULT_CONFIG_DIR)

    def load_database_config(self, config_name: str) -> Dict[str, Any]:

        config_path = self.config_dir / config_name
        if not config_path.exists():
            raise ConfigurationError(f"Config file {config_path} does not exist")
        try:
            with open(config_path, "r") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"YAML parsing error in {config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to load config file {config_path}: {e}") from e

        if not isinstance(config, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")

        return config

    def load_app_config(self, store_type: DocumentStoreType = DocumentStoreType.COSMOS) -> AppConfig:
        config = self.load_database_config(f"{store_type.value}.yaml")
        logger.info(f"Loaded configuration from {self.config_dir / (store_type.value + '.yaml')}")

        try:
            collection = CollectionScope(
                database_id=str(config["database_id"]),
                collection_id=str(config["collection_id"]),
            )
        except KeyError as e:
            raise ConfigurationError(f"Missing required setting {e} in {store_type.value}.yaml") from e

        connection_string_name = str(config.get("connection_string_name", "CosmosDB"))
        loader_config = config.get("loader", {}) or {}

        return AppConfig(
            store_type=store_type,
            collection=collection,
            connection_string_name=connection_string_name,
            connection_string=resolve_connection_string(connection_string_name, config),
            page_size=int(config.get("page_size", 50)),
            dimensions=tuple(_build_dimension(d) for d in config.get("dimensions", []) or []),
            loader=LoaderConfig(
                batch_count=int(loader_config.get("batch_count", 10)),
                documents_per_batch=int(loader_config.get("documents_per_batch", 1000)),
                max_batch_attempts=int(loader_config.get("max_batch_attempts", 5)),
            ),
            handler_config={
                "concurrency": int(config.get("concurrency", 10)),
                "retry": dict(config.get("retry", {}) or {}),
            },
        )


def resolve_connection_string(name: str, config: Dict[str, Any]) -> Optional[str]:
    """Environment first (ConnectionStrings__<name>), then the config file's connection_strings."""
    value = os.environ.get(f"{CONNECTION_STRING_ENV_PREFIX}{name}")
    if value:
        return value
    return (config.get("connection_strings", {}) or {}).get(name)


def _build_dimension(entry: Dict[str, Any]) -> AggregateDimension:
    try:
        return AggregateDimension(
            name=entry["name"],
            attribute=entry["attribute"],
            query_parameter=entry.get("query_parameter", entry["attribute"]),
            route=entry["route"],
            is_partition_key=bool(entry.get("partition_key", True)),
        )
    except KeyError as e:
        raise ConfigurationError(f"Dimension entry {entry} is missing {e}") from e
