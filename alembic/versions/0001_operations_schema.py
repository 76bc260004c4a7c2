"""operations schema

Revision ID: 0001_operations_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_operations_schema"
down_revision = None
branch_labels = None
depends_on = None

OPERATION_TABLES = ("rewards", "transfers", "vestings", "swaps", "orders")


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS ops;")

    for table in OPERATION_TABLES:
        op.execute(
            f"""
            CREATE TABLE IF NOT EXISTS ops.{table} (
                idempotency_key text PRIMARY KEY,
                event_id text NOT NULL,
                user_telegram_id text NOT NULL DEFAULT '',
                discriminator text NOT NULL DEFAULT '',
                status text NOT NULL,
                tx_hash text,
                user_op_hash text,
                date_added timestamp with time zone NOT NULL DEFAULT now(),
                updated_at timestamp with time zone NOT NULL DEFAULT now(),
                payload jsonb NOT NULL DEFAULT '{{}}'::jsonb,
                CONSTRAINT ck_{table}_status CHECK (
                    status IN ('pending', 'pending_hash', 'success', 'failure', 'failure_503')
                )
            );
            """
        )
        op.execute(
            f"CREATE INDEX IF NOT EXISTS ix_{table}_user_disc_status "
            f"ON ops.{table} USING btree (user_telegram_id, discriminator, status);"
        )
        op.execute(f"CREATE INDEX IF NOT EXISTS ix_{table}_event ON ops.{table} USING btree (event_id);")
        op.execute(f"CREATE INDEX IF NOT EXISTS ix_{table}_payload ON ops.{table} USING gin (payload jsonb_path_ops);")

    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_transfers_recipient "
        "ON ops.transfers USING btree ((payload->>'recipientTgId'), date_added);"
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS ops.users (
            user_telegram_id text PRIMARY KEY,
            patchwallet text,
            response_path text,
            user_handle text,
            user_name text,
            date_added timestamp with time zone NOT NULL DEFAULT now()
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS ops.gx_quotes (
            quote_id text NOT NULL,
            user_telegram_id text NOT NULL,
            payload jsonb NOT NULL DEFAULT '{}'::jsonb,
            date_added timestamp with time zone NOT NULL DEFAULT now(),
            CONSTRAINT gx_quotes_pkey PRIMARY KEY (user_telegram_id, quote_id)
        );
        """
    )

    op.execute(
        """
        CREATE TABLE IF NOT EXISTS ops.webhook_events (
            event_id text PRIMARY KEY,
            event text NOT NULL,
            params jsonb NOT NULL,
            status text NOT NULL DEFAULT 'PENDING',
            attempt_count integer NOT NULL DEFAULT 0,
            next_retry_at timestamp with time zone,
            last_error text,
            created_at timestamp with time zone NOT NULL DEFAULT now(),
            updated_at timestamp with time zone NOT NULL DEFAULT now(),
            CONSTRAINT ck_webhook_events_status CHECK (status IN ('PENDING', 'DONE', 'DROPPED'))
        );
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_webhook_events_due "
        "ON ops.webhook_events USING btree (status, next_retry_at, created_at);"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS ops.webhook_events;")
    op.execute("DROP TABLE IF EXISTS ops.gx_quotes;")
    op.execute("DROP TABLE IF EXISTS ops.users;")
    for table in OPERATION_TABLES:
        op.execute(f"DROP TABLE IF EXISTS ops.{table};")
