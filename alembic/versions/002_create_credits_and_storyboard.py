"""Create credit ledger, consume_credits() and storyboard jobs.

Revision ID: 002_create_credits_and_storyboard
Revises: 001_create_node_tables
Create Date: 2026-10-12

"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002_create_credits_and_storyboard"
down_revision: Union[str, None] = "001_create_node_tables"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE user_credits (
            user_id UUID PRIMARY KEY,
            credits INTEGER NOT NULL DEFAULT 0 CHECK (credits >= 0),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE credit_transactions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            amount INTEGER NOT NULL,
            transaction_type TEXT NOT NULL,
            description TEXT,
            job_id UUID,
            function_id TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX ix_credit_transactions_user ON credit_transactions (user_id, created_at)")

    # Debit and ledger entry in one statement; false when the balance is short.
    op.execute("""
        CREATE OR REPLACE FUNCTION consume_credits(
            p_user_id UUID,
            p_credits INTEGER,
            p_description TEXT,
            p_job_id UUID DEFAULT NULL,
            p_function_id TEXT DEFAULT NULL
        ) RETURNS BOOLEAN
        LANGUAGE plpgsql
        AS $$
        BEGIN
            UPDATE user_credits
               SET credits = credits - p_credits,
                   updated_at = now()
             WHERE user_id = p_user_id
               AND credits >= p_credits;

            IF NOT FOUND THEN
                RETURN false;
            END IF;

            INSERT INTO credit_transactions
                (user_id, amount, transaction_type, description, job_id, function_id)
            VALUES
                (p_user_id, -p_credits, 'usage', p_description, p_job_id, p_function_id);

            RETURN true;
        END;
        $$
    """)

    op.execute("""
        CREATE TABLE storyboard_jobs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID,
            session_id TEXT,
            lead_name TEXT NOT NULL,
            lead_gender TEXT NOT NULL,
            face_ref_url TEXT,
            language TEXT NOT NULL,
            accent TEXT NOT NULL,
            genres TEXT[] NOT NULL,
            prompt TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            stage TEXT NOT NULL DEFAULT 'created',
            n8n_webhook_sent BOOLEAN NOT NULL DEFAULT false,
            n8n_response JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_storyboard_jobs_identity CHECK (user_id IS NOT NULL OR session_id IS NOT NULL)
        )
    """)
    op.execute("CREATE INDEX ix_storyboard_jobs_status ON storyboard_jobs (status)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS storyboard_jobs")
    op.execute("DROP FUNCTION IF EXISTS consume_credits(UUID, INTEGER, TEXT, UUID, TEXT)")
    op.execute("DROP TABLE IF EXISTS credit_transactions")
    op.execute("DROP TABLE IF EXISTS user_credits")
