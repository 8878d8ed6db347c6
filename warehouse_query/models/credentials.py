"""
Warehouse Credential Models

Immutable, per-project connection descriptors. One model per supported
warehouse, discriminated by the `type` field, so two credential records are
equal exactly when every field is equal.
"""

from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class WarehouseType(str, Enum):
    """Supported warehouse dialects."""

    POSTGRES = "postgres"
    REDSHIFT = "redshift"
    SNOWFLAKE = "snowflake"
    BIGQUERY = "bigquery"
    DATABRICKS = "databricks"


class _Credentials(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class _SshTunnelFields(_Credentials):
    """SSH bastion settings shared by host-based warehouses."""

    use_ssh_tunnel: bool = False
    ssh_tunnel_host: Optional[str] = None
    ssh_tunnel_port: int = 22
    ssh_tunnel_user: Optional[str] = None
    ssh_tunnel_private_key: Optional[str] = None


class PostgresCredentials(_SshTunnelFields):
    type: Literal["postgres"] = "postgres"
    host: str
    port: int = 5432
    user: str
    password: str
    dbname: str
    schema_name: str = Field("public", alias="schema")
    sslmode: Optional[str] = None
    timeout_seconds: Optional[float] = None


class RedshiftCredentials(_SshTunnelFields):
    type: Literal["redshift"] = "redshift"
    host: str
    port: int = 5439
    user: str
    password: str
    dbname: str
    schema_name: str = Field("public", alias="schema")
    sslmode: Optional[str] = None
    timeout_seconds: Optional[float] = None


class SnowflakeCredentials(_Credentials):
    type: Literal["snowflake"] = "snowflake"
    account: str
    user: str
    password: str
    role: Optional[str] = None
    database: str
    warehouse: str
    schema_name: str = Field(..., alias="schema")
    client_session_keep_alive: bool = False
    query_tag: Optional[str] = None


class BigqueryCredentials(_Credentials):
    type: Literal["bigquery"] = "bigquery"
    project: str
    dataset: str
    keyfile_contents: Dict[str, Any]
    location: Optional[str] = None
    timeout_seconds: Optional[int] = 300
    maximum_bytes_billed: Optional[int] = None
    priority: Literal["interactive", "batch"] = "interactive"


class DatabricksCredentials(_Credentials):
    type: Literal["databricks"] = "databricks"
    server_host_name: str
    http_path: str
    personal_access_token: str
    catalog: Optional[str] = None
    database: str


WarehouseCredentials = Annotated[
    Union[
        PostgresCredentials,
        RedshiftCredentials,
        SnowflakeCredentials,
        BigqueryCredentials,
        DatabricksCredentials,
    ],
    Field(discriminator="type"),
]

_credentials_adapter: TypeAdapter[WarehouseCredentials] = TypeAdapter(
    WarehouseCredentials
)


def parse_credentials(payload: str | bytes | Dict[str, Any]) -> WarehouseCredentials:
    """Validate a JSON document (or mapping) into the matching credentials model."""
    if isinstance(payload, dict):
        return _credentials_adapter.validate_python(payload)
    return _credentials_adapter.validate_json(payload)


def uses_ssh_tunnel(credentials: WarehouseCredentials) -> bool:
    return bool(getattr(credentials, "use_ssh_tunnel", False))
