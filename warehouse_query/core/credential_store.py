"""
Credential Store

Reads per-project warehouse credentials and user attribute values from the
metadata database. Credentials are decrypted on every fetch and never cached
in cleartext.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import ValidationError

from warehouse_query.core.encryption import EncryptionError, EncryptionService
from warehouse_query.core.errors import DecodeError, NotFoundError
from warehouse_query.models import (
    UserAttributeValueMap,
    WarehouseCredentials,
    parse_credentials,
)

logger = logging.getLogger(__name__)


class MetadataPool(Protocol):
    async def fetch_one(self, query: str, *args: Any) -> Any: ...

    async def fetch_all(self, query: str, *args: Any) -> list[Any]: ...


_CREDENTIALS_SQL = """
SELECT wc.warehouse_type, wc.encrypted_credentials
FROM warehouse_credentials wc
INNER JOIN projects p ON wc.project_id = p.project_id
WHERE p.project_uuid = $1
"""

_ATTRIBUTE_DEFAULTS_SQL = """
SELECT ua.name, ua.attribute_default
FROM user_attributes ua
LEFT JOIN organizations o ON ua.organization_id = o.organization_id
WHERE o.organization_uuid = $1
"""

_MEMBER_ATTRIBUTE_VALUES_SQL = """
SELECT ua.name, omua.value
FROM organization_member_user_attributes omua
LEFT JOIN users u ON omua.user_id = u.user_id
LEFT JOIN organizations o ON omua.organization_id = o.organization_id
LEFT JOIN user_attributes ua ON omua.user_attribute_uuid = ua.user_attribute_uuid
WHERE o.organization_uuid = $1
  AND u.user_uuid = $2
"""


class CredentialStore:
    def __init__(self, pool: MetadataPool, encryption_service: EncryptionService):
        self._pool = pool
        self._encryption = encryption_service

    async def get_credentials(self, project_uuid: str) -> WarehouseCredentials:
        """
        Load and decrypt the warehouse credentials for a project.

        Raises:
            NotFoundError: the project has no warehouse credentials
            DecodeError: the stored blob cannot be decrypted or parsed
        """
        row = await self._pool.fetch_one(_CREDENTIALS_SQL, project_uuid)
        if row is None:
            raise NotFoundError(
                "Cannot find any warehouse credentials for project.",
                data={"project_uuid": project_uuid},
            )

        try:
            plaintext = self._encryption.decrypt(row["encrypted_credentials"])
            return parse_credentials(plaintext)
        except (EncryptionError, ValidationError, ValueError, TypeError) as e:
            logger.error(
                "Failed to decode warehouse credentials for project %s: %s",
                project_uuid,
                type(e).__name__,
            )
            raise DecodeError(
                "Unexpected error: failed to parse warehouse credentials"
            ) from e

    async def get_attribute_overrides(
        self, organization_uuid: str, user_uuid: str
    ) -> UserAttributeValueMap:
        """
        Organization attribute defaults overlaid with the member's own values.

        A blank member value falls back to the organization default.
        """
        defaults = await self._pool.fetch_all(_ATTRIBUTE_DEFAULTS_SQL, organization_uuid)
        member_rows = await self._pool.fetch_all(
            _MEMBER_ATTRIBUTE_VALUES_SQL, organization_uuid, user_uuid
        )

        member_values = {row["name"]: row["value"] for row in member_rows}
        return {
            row["name"]: member_values.get(row["name"]) or row["attribute_default"]
            for row in defaults
        }
