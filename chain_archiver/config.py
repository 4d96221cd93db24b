from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Dict, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .compression import COMPRESSION_BY_NAME, Compression, compression_by_name
from .tables import DEFAULT_CATALOG, Table, TableCatalog

KNOWN_NETWORKS: Dict[str, int] = {
    "mainnet": 1598306400,  # 2020-08-24T22:00:00Z
    "calibnet": 1667326380,
}
"""Genesis timestamps of the networks the archiver knows about."""


class Settings(BaseSettings):
    """Runtime configuration for the archiver.

    Every field can be set through an ``ARCHIVER_``-prefixed environment
    variable or a local ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="ARCHIVER_", env_file=(".env", ".env.local"), extra="ignore"
    )

    network: str = Field(default="mainnet", description="Name of the network being archived")
    genesis_ts: Optional[int] = Field(
        default=None,
        description="Genesis unix timestamp; required for networks not in KNOWN_NETWORKS",
    )
    lily_api_url: str = Field(
        default="http://127.0.0.1:1234/rpc/v0",
        description="JSON-RPC endpoint of the Lily node",
    )
    lily_api_token: Optional[str] = Field(default=None, description="Lily API token")
    lily_timeout: float = Field(default=30.0, description="HTTP timeout for Lily API calls")
    storage_name: str = Field(
        default="CSV",
        description="Name of the Lily storage definition walks write to",
    )
    storage_path: Path = Field(
        default=Path("/data/lily/export"),
        description="Directory the Lily storage writes walk output to",
    )
    ship_path: Path = Field(
        default=Path("/data/archive"),
        description="Root of the archive that compressed files are shipped to",
    )
    schema_version: int = Field(default=1, description="Major schema version of exported tables")
    tables: Annotated[List[str], NoDecode] = Field(
        default_factory=list,
        description="Tables to export; every table of the schema when empty",
    )
    compression: str = Field(default="gz", description="Compression applied to shipped files")
    min_height: int = Field(default=0, ge=0, description="Lowest height to export from")
    poll_interval_seconds: float = Field(
        default=30.0, gt=0, description="Interval between polls of external conditions"
    )
    metrics_port: Optional[int] = Field(
        default=None, description="Port serving Prometheus metrics while running"
    )

    @field_validator("compression")
    @classmethod
    def _known_compression(cls, value: str) -> str:
        if value not in COMPRESSION_BY_NAME:
            raise ValueError(f"unsupported compression '{value}'")
        return value

    @field_validator("tables", mode="before")
    @classmethod
    def _split_tables(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @model_validator(mode="after")
    def _check_network(self) -> "Settings":
        if self.genesis_ts is None and self.network not in KNOWN_NETWORKS:
            raise ValueError(
                f"unknown network '{self.network}'; set ARCHIVER_GENESIS_TS explicitly"
            )
        unknown = [name for name in self.tables if name not in DEFAULT_CATALOG]
        if unknown:
            raise ValueError(f"unknown tables: {', '.join(unknown)}")
        return self

    @property
    def network_genesis_ts(self) -> int:
        if self.genesis_ts is not None:
            return self.genesis_ts
        return KNOWN_NETWORKS[self.network]

    @property
    def compression_scheme(self) -> Compression:
        return compression_by_name(self.compression)

    def allowed_tables(self, catalog: TableCatalog = DEFAULT_CATALOG) -> List[Table]:
        if self.tables:
            return catalog.select(self.schema_version, self.tables)
        return catalog.for_schema(self.schema_version)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


__all__ = ["KNOWN_NETWORKS", "Settings", "get_settings"]
