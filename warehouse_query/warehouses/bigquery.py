"""
BigQuery warehouse client.

Authenticates with the service-account key stored in the credentials.
Query tags are attached to each job as labels.
"""

import logging
import re
import threading
from typing import Any, Dict, Optional

from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import bigquery
from google.oauth2 import service_account

from warehouse_query.core.errors import (
    WarehouseConnectionError,
    WarehouseExecutionError,
)
from warehouse_query.models import (
    BigqueryCredentials,
    DimensionType,
    FieldInfo,
    RunQueryTags,
    WarehouseResults,
)
from warehouse_query.warehouses.base import WarehouseClient, dimension_type_from_name

logger = logging.getLogger(__name__)

BIGQUERY_TYPE_MAP: Dict[str, DimensionType] = {
    "INTEGER": DimensionType.NUMBER,
    "INT64": DimensionType.NUMBER,
    "FLOAT": DimensionType.NUMBER,
    "FLOAT64": DimensionType.NUMBER,
    "NUMERIC": DimensionType.NUMBER,
    "BIGNUMERIC": DimensionType.NUMBER,
    "DATE": DimensionType.DATE,
    "DATETIME": DimensionType.TIMESTAMP,
    "TIMESTAMP": DimensionType.TIMESTAMP,
    "TIME": DimensionType.TIMESTAMP,
    "BOOLEAN": DimensionType.BOOLEAN,
    "BOOL": DimensionType.BOOLEAN,
}

_LABEL_INVALID = re.compile(r"[^a-z0-9_-]")


def to_job_labels(tags: Optional[RunQueryTags]) -> Dict[str, str]:
    """
    Convert query tags into BigQuery job labels.

    Labels only allow lowercase letters, digits, `_` and `-`, up to 63 chars.
    """
    labels: Dict[str, str] = {}
    for key, value in (tags or {}).items():
        label_key = _LABEL_INVALID.sub("_", str(key).lower())[:63]
        if not label_key:
            continue
        labels[label_key] = _LABEL_INVALID.sub("_", str(value).lower())[:63]
    return labels


class BigqueryWarehouseClient(WarehouseClient):
    credentials: BigqueryCredentials

    field_quote_char = "`"
    string_quote_char = "'"
    escape_string_quote_char = "\\"

    def __init__(self, credentials: BigqueryCredentials, **kwargs):
        super().__init__(credentials, **kwargs)
        self._client: Optional[bigquery.Client] = None
        # Clients are built lazily inside executor threads.
        self._client_lock = threading.Lock()

    def _get_client(self) -> bigquery.Client:
        with self._client_lock:
            if self._client is None:
                creds = self.credentials
                try:
                    sa_credentials = service_account.Credentials.from_service_account_info(
                        creds.keyfile_contents
                    )
                except (ValueError, auth_exceptions.GoogleAuthError) as e:
                    raise WarehouseConnectionError(
                        f"Invalid BigQuery service account key: {e}"
                    ) from e
                self._client = bigquery.Client(
                    project=creds.project,
                    credentials=sa_credentials,
                    location=creds.location,
                )
            return self._client

    def _run_blocking(self, sql: str, labels: Dict[str, str]) -> tuple[Any, Any]:
        creds = self.credentials
        job_config = bigquery.QueryJobConfig(
            labels=labels,
            maximum_bytes_billed=creds.maximum_bytes_billed,
            priority=(
                bigquery.QueryPriority.BATCH
                if creds.priority == "batch"
                else bigquery.QueryPriority.INTERACTIVE
            ),
            default_dataset=f"{creds.project}.{creds.dataset}",
        )
        job = self._get_client().query(sql, job_config=job_config)
        result = job.result(timeout=creds.timeout_seconds)
        return result.schema, [dict(row.items()) for row in result]

    async def run_query(
        self, sql: str, tags: Optional[RunQueryTags] = None
    ) -> WarehouseResults:
        try:
            schema, rows = await self._run_in_executor(
                self._run_blocking, sql, to_job_labels(tags)
            )
        except WarehouseConnectionError:
            raise
        except (auth_exceptions.GoogleAuthError, google_exceptions.Forbidden) as e:
            raise WarehouseConnectionError(str(e)) from e
        except google_exceptions.GoogleAPICallError as e:
            raise WarehouseExecutionError(getattr(e, "message", None) or str(e)) from e
        except TimeoutError as e:
            raise WarehouseExecutionError(
                f"BigQuery job did not finish within {self.credentials.timeout_seconds}s"
            ) from e

        fields = {
            field.name: FieldInfo(
                type=dimension_type_from_name(field.field_type, BIGQUERY_TYPE_MAP)
            )
            for field in schema
        }
        return WarehouseResults(fields=fields, rows=rows)

    async def close(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await self._run_in_executor(client.close)
