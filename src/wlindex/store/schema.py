"""
DDL for the protocol index SQLite database.

Identifiers are assigned by the builder, not by SQLite. Descriptions are
written before the rows that reference them.
"""

SCHEMA_VERSION = 1

TABLES = (
    "rel_arg_enum", "rel_arg_interface",
    "args", "messages", "entries", "enums", "interfaces", "protocols",
    "repos", "descriptions", "types", "meta",
)

DROP_SQL = "".join(f"DROP TABLE IF EXISTS {t};\n" for t in TABLES)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

-- Primitive argument types
CREATE TABLE IF NOT EXISTS types (
    type_id     INTEGER PRIMARY KEY,
    name        TEXT NOT NULL UNIQUE
);

-- Source repositories
CREATE TABLE IF NOT EXISTS repos (
    repo_id     INTEGER PRIMARY KEY,
    name        TEXT NOT NULL,
    url         TEXT NOT NULL
);

-- Reflowed <description> bodies, owned by exactly one row elsewhere
CREATE TABLE IF NOT EXISTS descriptions (
    description_id  INTEGER PRIMARY KEY,
    summary         TEXT,
    body            TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS protocols (
    protocol_id     INTEGER PRIMARY KEY,
    repo_id         INTEGER NOT NULL REFERENCES repos ON DELETE CASCADE,
    name            TEXT NOT NULL,
    path            TEXT NOT NULL,
    copyright       TEXT,
    description_id  INTEGER REFERENCES descriptions
);

CREATE INDEX IF NOT EXISTS idx_protocols_name ON protocols(name);

CREATE TABLE IF NOT EXISTS interfaces (
    interface_id    INTEGER PRIMARY KEY,
    protocol_id     INTEGER NOT NULL REFERENCES protocols ON DELETE CASCADE,
    name            TEXT NOT NULL,
    version         INTEGER NOT NULL,
    description_id  INTEGER REFERENCES descriptions
);

CREATE INDEX IF NOT EXISTS idx_interfaces_name ON interfaces(name);
CREATE INDEX IF NOT EXISTS idx_interfaces_protocol ON interfaces(protocol_id);

CREATE TABLE IF NOT EXISTS enums (
    enum_id         INTEGER PRIMARY KEY,
    interface_id    INTEGER NOT NULL REFERENCES interfaces ON DELETE CASCADE,
    name            TEXT NOT NULL,
    since           INTEGER,
    is_bitfield     INTEGER NOT NULL DEFAULT 0,
    description_id  INTEGER REFERENCES descriptions
);

CREATE INDEX IF NOT EXISTS idx_enums_interface ON enums(interface_id);

CREATE TABLE IF NOT EXISTS entries (
    entry_id        INTEGER PRIMARY KEY,
    enum_id         INTEGER NOT NULL REFERENCES enums ON DELETE CASCADE,
    name            TEXT NOT NULL,
    value_str       TEXT NOT NULL,
    value           INTEGER NOT NULL,
    summary         TEXT,
    since           INTEGER,
    deprecated_since INTEGER,
    description_id  INTEGER REFERENCES descriptions
);

CREATE INDEX IF NOT EXISTS idx_entries_enum ON entries(enum_id);

-- Requests and events; number is the per-direction opcode
CREATE TABLE IF NOT EXISTS messages (
    message_id      INTEGER PRIMARY KEY,
    interface_id    INTEGER NOT NULL REFERENCES interfaces ON DELETE CASCADE,
    number          INTEGER NOT NULL,
    name            TEXT NOT NULL,
    is_request      INTEGER NOT NULL,
    is_destructor   INTEGER NOT NULL DEFAULT 0,
    since           INTEGER,
    deprecated_since INTEGER,
    description_id  INTEGER REFERENCES descriptions
);

CREATE INDEX IF NOT EXISTS idx_messages_interface ON messages(interface_id);

CREATE TABLE IF NOT EXISTS args (
    arg_id          INTEGER PRIMARY KEY,
    message_id      INTEGER NOT NULL REFERENCES messages ON DELETE CASCADE,
    position        INTEGER NOT NULL,
    name            TEXT NOT NULL,
    type_id         INTEGER NOT NULL REFERENCES types,
    summary         TEXT,
    description_id  INTEGER REFERENCES descriptions,
    interface_name  TEXT,
    allow_null      INTEGER NOT NULL DEFAULT 0,
    enum_name       TEXT
);

CREATE INDEX IF NOT EXISTS idx_args_message ON args(message_id);

-- Resolved cross references
CREATE TABLE IF NOT EXISTS rel_arg_interface (
    arg_id          INTEGER NOT NULL REFERENCES args ON DELETE CASCADE,
    interface_id    INTEGER NOT NULL REFERENCES interfaces ON DELETE CASCADE,
    PRIMARY KEY (arg_id, interface_id)
);

CREATE INDEX IF NOT EXISTS idx_rel_arg_interface_interface ON rel_arg_interface(interface_id);

CREATE TABLE IF NOT EXISTS rel_arg_enum (
    arg_id          INTEGER NOT NULL REFERENCES args ON DELETE CASCADE,
    enum_id         INTEGER NOT NULL REFERENCES enums ON DELETE CASCADE,
    PRIMARY KEY (arg_id, enum_id)
);

CREATE INDEX IF NOT EXISTS idx_rel_arg_enum_enum ON rel_arg_enum(enum_id);

-- Schema version and rebuild metadata
CREATE TABLE IF NOT EXISTS meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

INIT_META_SQL = """
INSERT OR IGNORE INTO meta (key, value) VALUES ('schema_version', ?);
"""
