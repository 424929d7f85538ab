"""
Row-level security and change notification DDL for the bookmarks table.

The database is the authority for ownership: a transaction bound to an identity
(see bind_identity) runs as the restricted `bookmark_owner` role, and the policies
below only let that role see, insert, or delete rows whose user_id equals the bound
identity. There is no UPDATE grant, so bookmarks are create-or-delete only.

Committed inserts and deletes are published with pg_notify on a per-owner channel
(`bookmarks:<user_id>`), which is how change subscriptions are filtered server-side.

The same statements are installed by the Alembic migration and, for
metadata.create_all() (tests, local bootstrap), by DDL events on the table.
"""
from uuid import UUID

from sqlalchemy import DDL, Table, event, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

OWNER_ROLE = "bookmark_owner"
IDENTITY_SETTING = "app.current_user_id"
CHANNEL_PREFIX = "bookmarks:"

_BOUND_IDENTITY = f"nullif(current_setting('{IDENTITY_SETTING}', true), '')::uuid"

CREATE_OWNER_ROLE = f"""
DO $$
BEGIN
    IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = '{OWNER_ROLE}') THEN
        CREATE ROLE {OWNER_ROLE} NOLOGIN;
    END IF;
END
$$
"""

CREATE_NOTIFY_FUNCTION = f"""
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
        '{CHANNEL_PREFIX}' || changed.user_id::text,
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
"""

STORE_POLICY_STATEMENTS: list[str] = [
    CREATE_OWNER_ROLE,
    # The creating role is the one the application connects as; bind_identity
    # needs it to be able to SET ROLE to the owner role
    f"GRANT {OWNER_ROLE} TO CURRENT_USER",
    f"GRANT SELECT, INSERT, DELETE ON bookmarks TO {OWNER_ROLE}",
    # Authentication looks users up on the same request transaction
    f"GRANT SELECT ON users TO {OWNER_ROLE}",
    "ALTER TABLE bookmarks ENABLE ROW LEVEL SECURITY",
    f"""
    CREATE POLICY bookmarks_select_own ON bookmarks
        FOR SELECT TO {OWNER_ROLE}
        USING (user_id = {_BOUND_IDENTITY})
    """,
    f"""
    CREATE POLICY bookmarks_insert_own ON bookmarks
        FOR INSERT TO {OWNER_ROLE}
        WITH CHECK (user_id = {_BOUND_IDENTITY})
    """,
    f"""
    CREATE POLICY bookmarks_delete_own ON bookmarks
        FOR DELETE TO {OWNER_ROLE}
        USING (user_id = {_BOUND_IDENTITY})
    """,
    CREATE_NOTIFY_FUNCTION,
    """
    CREATE TRIGGER bookmarks_notify_change
        AFTER INSERT OR DELETE ON bookmarks
        FOR EACH ROW EXECUTE FUNCTION notify_bookmark_change()
    """,
]


def channel_name(owner_id: UUID | str) -> str:
    """Notification channel carrying the changes of one owner's bookmarks."""
    return f"{CHANNEL_PREFIX}{owner_id}"


def attach_store_policies(table: Table) -> None:
    """Install the policy statements whenever metadata.create_all() creates `table`."""
    for statement in STORE_POLICY_STATEMENTS:
        # DDL() applies %-formatting to its statement
        event.listen(table, "after_create", DDL(statement.replace("%", "%%")))


async def bind_identity(db: AsyncSession, user_id: UUID) -> None:
    """
    Bind the authenticated identity to the current transaction.

    For the rest of the transaction, statements run as the restricted owner role
    and row-level security compares user_id against `user_id`. Both settings are
    transaction-local, so they end with the commit or rollback.
    """
    await db.execute(text(f"SET LOCAL ROLE {OWNER_ROLE}"))
    await db.execute(select(func.set_config(IDENTITY_SETTING, str(user_id), True)))


async def release_identity(db: AsyncSession) -> None:
    """Return the current transaction to the connection's own role, unbound."""
    await db.execute(text("SET LOCAL ROLE NONE"))
    await db.execute(select(func.set_config(IDENTITY_SETTING, "", True)))
