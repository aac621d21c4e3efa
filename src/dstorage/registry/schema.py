"""SQLite schema definitions for the local registry."""

# SQL schema definitions
SCHEMA_VERSION = 1

CREATE_TABLES = [
    # Files table - append-only, one row per registered upload
    """
    CREATE TABLE IF NOT EXISTS files (
        file_id INTEGER PRIMARY KEY AUTOINCREMENT,
        content_hash TEXT NOT NULL,
        file_size INTEGER NOT NULL,
        file_name TEXT NOT NULL,
        file_description TEXT,
        file_type TEXT,
        uploader TEXT NOT NULL,
        upload_time INTEGER NOT NULL,
        access_type INTEGER NOT NULL CHECK (access_type IN (0, 1, 2)), -- 0 public, 1 private, 2 restricted
        is_encrypted INTEGER NOT NULL DEFAULT 0
    )
    """,
    # Access grants - revoking flips active, rows are never removed
    """
    CREATE TABLE IF NOT EXISTS access_grants (
        file_id INTEGER NOT NULL,
        grantee TEXT NOT NULL,
        active INTEGER NOT NULL DEFAULT 1,
        updated_at INTEGER NOT NULL,
        PRIMARY KEY (file_id, grantee),
        FOREIGN KEY (file_id) REFERENCES files(file_id)
    )
    """,
    # Audit trail written before every fetch
    """
    CREATE TABLE IF NOT EXISTS access_log (
        log_id INTEGER PRIMARY KEY AUTOINCREMENT,
        file_id INTEGER NOT NULL,
        accessor TEXT NOT NULL,
        accessed_at INTEGER NOT NULL,
        FOREIGN KEY (file_id) REFERENCES files(file_id)
    )
    """,
    # Schema version table
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

# Index definitions for the listing queries
CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_files_uploader ON files(uploader)",
    "CREATE INDEX IF NOT EXISTS idx_files_access_type ON files(access_type)",
    "CREATE INDEX IF NOT EXISTS idx_files_content_hash ON files(content_hash)",
    "CREATE INDEX IF NOT EXISTS idx_access_grants_grantee ON access_grants(grantee)",
    "CREATE INDEX IF NOT EXISTS idx_access_log_file_id ON access_log(file_id)",
]

# Records are immutable once registered
CREATE_TRIGGERS = [
    """
    CREATE TRIGGER IF NOT EXISTS files_no_update
    BEFORE UPDATE ON files
    BEGIN
        SELECT RAISE(ABORT, 'file records are immutable');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS files_no_delete
    BEFORE DELETE ON files
    BEGIN
        SELECT RAISE(ABORT, 'file records are append-only');
    END
    """,
]


def get_init_schema():
    """
    Get complete schema initialization SQL

    Returns:
        List of SQL statements to execute
    """
    statements = []
    statements.extend(CREATE_TABLES)
    statements.extend(CREATE_INDEXES)
    statements.extend(CREATE_TRIGGERS)
    statements.append(
        f"INSERT OR IGNORE INTO schema_version (version) VALUES ({SCHEMA_VERSION})"
    )
    return statements
