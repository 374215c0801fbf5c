"""Create jobs, nodes and node library tables.

Revision ID: 001_create_node_tables
Revises:
Create Date: 2026-10-12

"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_create_node_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')
    op.execute("CREATE EXTENSION IF NOT EXISTS ltree")

    op.execute("""
        CREATE TABLE jobs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID,
            session_id TEXT,
            title TEXT,
            status TEXT NOT NULL DEFAULT 'draft',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX ix_jobs_user_id ON jobs (user_id)")

    op.execute("""
        CREATE TABLE n8n_functions (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            kind TEXT NOT NULL CHECK (kind IN ('generate', 'validate')),
            active BOOLEAN NOT NULL DEFAULT true,
            price_in_credits NUMERIC NOT NULL DEFAULT 0,
            webhook_url TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX ix_n8n_functions_name ON n8n_functions (name)")

    op.execute("""
        CREATE TABLE node_library (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            node_type TEXT NOT NULL,
            title TEXT,
            slug TEXT,
            content JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE nodes (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            job_id UUID NOT NULL REFERENCES jobs (id) ON DELETE CASCADE,
            addr LTREE NOT NULL,
            node_type TEXT NOT NULL,
            title TEXT,
            content JSONB,
            dependencies JSONB NOT NULL DEFAULT '[]'::jsonb,
            generate_n8n_id TEXT REFERENCES n8n_functions (id),
            validate_n8n_id TEXT REFERENCES n8n_functions (id),
            status TEXT NOT NULL DEFAULT 'idle',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_nodes_job_addr UNIQUE (job_id, addr)
        )
    """)
    op.execute("CREATE INDEX ix_nodes_addr_gist ON nodes USING GIST (addr)")
    op.execute("CREATE INDEX ix_nodes_job_type ON nodes (job_id, node_type)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS nodes")
    op.execute("DROP TABLE IF EXISTS node_library")
    op.execute("DROP TABLE IF EXISTS n8n_functions")
    op.execute("DROP TABLE IF EXISTS jobs")
