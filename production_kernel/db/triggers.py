"""
Module: production_kernel.db.triggers
Responsibility: Installing, removing and inspecting the database-level
    append-only triggers.  This is the database complement to the ORM
    listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only.
    MUST NOT import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - stock_transactions rows: no UPDATE, no DELETE.
    - labour_log_entries rows: no UPDATE, no DELETE.
    - qc_records rows: no UPDATE, no DELETE.
    - audit_events rows: no UPDATE, no DELETE.

Failure modes:
    - SQLite: RAISE(ABORT) surfaces as IntegrityError.
    - PostgreSQL: RAISE EXCEPTION surfaces as InternalError/IntegrityError.

Audit relevance:
    Raw SQL, bulk statements and direct console access bypass the ORM.
    These triggers keep the ledger and inspection evidence append-only
    even then.
"""

from sqlalchemy import text
from sqlalchemy.engine import Engine

from production_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

APPEND_ONLY_TABLES = (
    "stock_transactions",
    "labour_log_entries",
    "qc_records",
    "audit_events",
)


def _trigger_names(table: str) -> tuple[str, str]:
    return f"trg_{table}_no_update", f"trg_{table}_no_delete"


ALL_TRIGGER_NAMES = [name for table in APPEND_ONLY_TABLES for name in _trigger_names(table)]


def _sqlite_install_statements() -> list[str]:
    statements = []
    for table in APPEND_ONLY_TABLES:
        upd, dele = _trigger_names(table)
        statements.append(
            f"CREATE TRIGGER IF NOT EXISTS {upd} BEFORE UPDATE ON {table} "
            f"BEGIN SELECT RAISE(ABORT, '{table} is append-only'); END"
        )
        statements.append(
            f"CREATE TRIGGER IF NOT EXISTS {dele} BEFORE DELETE ON {table} "
            f"BEGIN SELECT RAISE(ABORT, '{table} is append-only'); END"
        )
    return statements


def _postgres_install_statements() -> list[str]:
    statements = [
        """
        CREATE OR REPLACE FUNCTION production_reject_mutation() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION '% is append-only', TG_TABLE_NAME
                USING ERRCODE = 'integrity_constraint_violation';
        END;
        $$ LANGUAGE plpgsql
        """
    ]
    for table in APPEND_ONLY_TABLES:
        upd, dele = _trigger_names(table)
        statements.append(f"DROP TRIGGER IF EXISTS {upd} ON {table}")
        statements.append(
            f"CREATE TRIGGER {upd} BEFORE UPDATE ON {table} "
            "FOR EACH ROW EXECUTE FUNCTION production_reject_mutation()"
        )
        statements.append(f"DROP TRIGGER IF EXISTS {dele} ON {table}")
        statements.append(
            f"CREATE TRIGGER {dele} BEFORE DELETE ON {table} "
            "FOR EACH ROW EXECUTE FUNCTION production_reject_mutation()"
        )
    return statements


def _drop_statements(dialect: str) -> list[str]:
    statements = []
    for table in APPEND_ONLY_TABLES:
        for name in _trigger_names(table):
            if dialect == "postgresql":
                statements.append(f"DROP TRIGGER IF EXISTS {name} ON {table}")
            else:
                statements.append(f"DROP TRIGGER IF EXISTS {name}")
    if dialect == "postgresql":
        statements.append("DROP FUNCTION IF EXISTS production_reject_mutation()")
    return statements


def install_append_only_triggers(engine: Engine) -> None:
    """
    Install database-level append-only triggers (idempotent).

    Preconditions: Tables must exist (call after metadata.create_all()).
    """
    dialect = engine.dialect.name
    if dialect == "postgresql":
        statements = _postgres_install_statements()
    else:
        statements = _sqlite_install_statements()

    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))

    logger.info(
        "append_only_triggers_installed",
        extra={"dialect": dialect, "trigger_count": len(ALL_TRIGGER_NAMES)},
    )


def uninstall_append_only_triggers(engine: Engine) -> None:
    """
    Remove the append-only triggers.

    WARNING: Only for migrations and test teardown.  Re-install immediately.
    """
    with engine.begin() as conn:
        for statement in _drop_statements(engine.dialect.name):
            conn.execute(text(statement))


def get_installed_triggers(engine: Engine) -> list[str]:
    """List the append-only triggers currently present in the database."""
    if engine.dialect.name == "postgresql":
        query = "SELECT tgname FROM pg_trigger WHERE tgname LIKE 'trg_%_no_%' ORDER BY tgname"
    else:
        query = (
            "SELECT name FROM sqlite_master WHERE type = 'trigger' "
            "AND name LIKE 'trg_%_no_%' ORDER BY name"
        )
    with engine.connect() as conn:
        names = [row[0] for row in conn.execute(text(query))]
    return [name for name in names if name in ALL_TRIGGER_NAMES]


def triggers_installed(engine: Engine) -> bool:
    """True iff every append-only trigger is present."""
    return len(get_installed_triggers(engine)) == len(ALL_TRIGGER_NAMES)
