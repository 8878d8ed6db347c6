"""
Database Schema Setup Script

Creates the metadata tables read by the credential store (rerunnable,
idempotent): organizations, users, projects, encrypted warehouse
credentials and user attributes.

Usage:
    python -m warehouse_query.setup_schema
"""

import asyncio
import sys

from warehouse_query.config import settings
from warehouse_query.connectors.postgres_pool import PostgresConnectionPool

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS organizations (
    organization_id SERIAL PRIMARY KEY,
    organization_uuid UUID NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS users (
    user_id SERIAL PRIMARY KEY,
    user_uuid UUID NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS projects (
    project_id SERIAL PRIMARY KEY,
    project_uuid UUID NOT NULL UNIQUE,
    organization_id INTEGER NOT NULL REFERENCES organizations (organization_id) ON DELETE CASCADE
);

-- One credentials row per project; the blob is AES-GCM encrypted JSON.
CREATE TABLE IF NOT EXISTS warehouse_credentials (
    project_id INTEGER PRIMARY KEY REFERENCES projects (project_id) ON DELETE CASCADE,
    warehouse_type TEXT NOT NULL,
    encrypted_credentials BYTEA NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS user_attributes (
    user_attribute_uuid UUID PRIMARY KEY,
    organization_id INTEGER NOT NULL REFERENCES organizations (organization_id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    attribute_default TEXT,
    UNIQUE (organization_id, name)
);

CREATE TABLE IF NOT EXISTS organization_member_user_attributes (
    user_id INTEGER NOT NULL REFERENCES users (user_id) ON DELETE CASCADE,
    organization_id INTEGER NOT NULL REFERENCES organizations (organization_id) ON DELETE CASCADE,
    user_attribute_uuid UUID NOT NULL REFERENCES user_attributes (user_attribute_uuid) ON DELETE CASCADE,
    value TEXT NOT NULL,
    PRIMARY KEY (user_id, organization_id, user_attribute_uuid)
);
"""


def split_sql_statements(sql_content: str) -> list[str]:
    """Split a DDL script into statements, dropping blank and comment lines."""
    statements: list[str] = []
    current_statement: list[str] = []

    for line in sql_content.split("\n"):
        stripped = line.strip()

        if not stripped or stripped.startswith("--"):
            continue

        current_statement.append(line)

        if stripped.endswith(";"):
            statements.append("\n".join(current_statement))
            current_statement = []

    return statements


async def execute_sql_statements(pool: PostgresConnectionPool, sql_content: str) -> None:
    statements = split_sql_statements(sql_content)
    total = len(statements)
    print(f"\n📋 Found {total} SQL statements to execute\n")

    async with pool.get_connection() as conn:
        for idx, statement in enumerate(statements, 1):
            first_line = statement.strip().split("\n")[0][:80]
            print(f"[{idx}/{total}] Executing: {first_line}...")
            await conn.execute(statement)
            print("  ✓ Success")


async def setup_schema() -> None:
    """Main setup function."""
    print("=" * 80)
    print("🏗️  Warehouse Query Service - Metadata Schema Setup")
    print("=" * 80)

    print("\n📊 Metadata database:")
    print(f"  Host: {settings.DATABASE_HOST}:{settings.DATABASE_PORT}")
    print(f"  Database: {settings.DATABASE_NAME}")
    print(f"  User: {settings.DATABASE_USER}")

    pool = PostgresConnectionPool(
        host=settings.DATABASE_HOST,
        port=settings.DATABASE_PORT,
        database=settings.DATABASE_NAME,
        user=settings.DATABASE_USER,
        password=settings.DATABASE_PASSWORD,
        min_size=1,
        max_size=1,
        pool_name="setup",
    )
    try:
        print("\n🚀 Executing schema setup...")
        await execute_sql_statements(pool, SCHEMA_SQL)
    finally:
        await pool.close()

    print("\n" + "=" * 80)
    print("✅ Metadata schema setup complete!")
    print("=" * 80)


if __name__ == "__main__":
    try:
        asyncio.run(setup_schema())
    except Exception as e:
        print(f"\n❌ Schema setup failed: {e}")
        sys.exit(1)
