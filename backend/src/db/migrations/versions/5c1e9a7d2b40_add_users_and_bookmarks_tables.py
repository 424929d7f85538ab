"""
Add users and bookmarks tables.

Revision ID: 5c1e9a7d2b40
Revises:
Create Date: 2026-10-18 10:12:41.508913
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c1e9a7d2b40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "auth0_id",
            sa.String(length=255),
            nullable=False,
            comment="Auth0 'sub' claim - unique identifier from Auth0",
        ),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("clock_timestamp()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("clock_timestamp()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_auth0_id"), "users", ["auth0_id"], unique=True)
    op.create_index(op.f("ix_users_created_at"), "users", ["created_at"], unique=False)

    op.create_table(
        "bookmarks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("clock_timestamp()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_bookmarks_user_id"), "bookmarks", ["user_id"], unique=False)
    op.create_index(
        op.f("ix_bookmarks_created_at"), "bookmarks", ["created_at"], unique=False,
    )

    # Row-level security, owner role grants, and the change notification trigger.
    # Frozen copy of db.policies.STORE_POLICY_STATEMENTS at this revision.
    op.execute("""
        DO $$
        BEGIN
            IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = 'bookmark_owner') THEN
                CREATE ROLE bookmark_owner NOLOGIN;
            END IF;
        END
        $$
    """)
    # The migrating role is the role the application connects as; it must be able
    # to SET ROLE bookmark_owner.
    op.execute("GRANT bookmark_owner TO CURRENT_USER")
    op.execute("GRANT SELECT, INSERT, DELETE ON bookmarks TO bookmark_owner")
    op.execute("GRANT SELECT ON users TO bookmark_owner")
    op.execute("ALTER TABLE bookmarks ENABLE ROW LEVEL SECURITY")
    op.execute("""
        CREATE POLICY bookmarks_select_own ON bookmarks
            FOR SELECT TO bookmark_owner
            USING (user_id = nullif(current_setting('app.current_user_id', true), '')::uuid)
    """)
    op.execute("""
        CREATE POLICY bookmarks_insert_own ON bookmarks
            FOR INSERT TO bookmark_owner
            WITH CHECK (user_id = nullif(current_setting('app.current_user_id', true), '')::uuid)
    """)
    op.execute("""
        CREATE POLICY bookmarks_delete_own ON bookmarks
            FOR DELETE TO bookmark_owner
            USING (user_id = nullif(current_setting('app.current_user_id', true), '')::uuid)
    """)
    op.execute("""
        CREATE OR REPLACE FUNCTION notify_bookmark_change() RETURNS trigger AS $$
        DECLARE
            changed bookmarks;
        BEGIN
            IF TG_OP = 'DELETE' THEN
                changed := OLD;
            ELSE
                changed := NEW;
            END IF;
            PERFORM pg_notify(
                'bookmarks:' || changed.user_id::text,
                json_build_object(
                    'type', TG_OP,
                    'id', changed.id,
                    'user_id', changed.user_id,
                    'record', row_to_json(changed)
                )::text
            );
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER bookmarks_notify_change
            AFTER INSERT OR DELETE ON bookmarks
            FOR EACH ROW EXECUTE FUNCTION notify_bookmark_change()
    """)


def downgrade() -> None:
    """Downgrade schema."""
    op.execute("DROP TRIGGER IF EXISTS bookmarks_notify_change ON bookmarks")
    op.execute("DROP FUNCTION IF EXISTS notify_bookmark_change()")
    op.execute("DROP POLICY IF EXISTS bookmarks_delete_own ON bookmarks")
    op.execute("DROP POLICY IF EXISTS bookmarks_insert_own ON bookmarks")
    op.execute("DROP POLICY IF EXISTS bookmarks_select_own ON bookmarks")
    op.drop_index(op.f("ix_bookmarks_created_at"), table_name="bookmarks")
    op.drop_index(op.f("ix_bookmarks_user_id"), table_name="bookmarks")
    op.drop_table("bookmarks")
    op.drop_index(op.f("ix_users_created_at"), table_name="users")
    op.drop_index(op.f("ix_users_auth0_id"), table_name="users")
    op.drop_table("users")
