# config.example.py

"""
Documentation-only module (safe to commit).

Configuration is read from environment variables, optionally from a local .env
file in the working directory (values already in the environment win).
See src/blockreceipt/config.py for parsing and defaults.

Leave the *_URL variables empty to run fully offline: the marketplace never
finds a listing, the minter mints sequential token ids and metadata is kept in
memory, so every submitted receipt walks the fallback path.
"""

ENV_VARS = {
    # App / logging
    "BLOCKRECEIPT_APP_NAME": "Name used in logs and the console banner (default: blockreceipt).",
    "BLOCKRECEIPT_LOG_LEVEL": "Console log level (default: INFO). The log file always gets DEBUG.",
    "BLOCKRECEIPT_CONSOLE_ENABLED": "Run the operator console (true/false, default: true).",
    # Storage
    "BLOCKRECEIPT_DATA_DIR": "Local data dir for logs and the SQLite file (default: .local/blockreceipt).",
    "BLOCKRECEIPT_TASK_BACKEND": "memory | sqlite (default: memory).",
    "BLOCKRECEIPT_TASKS_DB_PATH": "SQLite file (default: <DATA_DIR>/tasks.sqlite3).",
    # Dispatcher
    "BLOCKRECEIPT_MAX_CONCURRENT": "Handlers allowed in flight at once (default: 3, min 1).",
    "BLOCKRECEIPT_TICK_INTERVAL_SECONDS": "Admission pass interval (default: 1.0, min 0.05).",
    "BLOCKRECEIPT_TASK_TIMEOUT_SECONDS": "Per-handler timeout; 0 disables (default: 120).",
    "BLOCKRECEIPT_TASK_RETENTION_HOURS": "Finished tasks older than this are swept; 0 disables (default: 24).",
    "BLOCKRECEIPT_CLEANUP_INTERVAL_SECONDS": "How often the sweep runs; 0 disables (default: 3600).",
    # External services
    "BLOCKRECEIPT_MARKETPLACE_URL": "Purchase service base URL (POST <url>/purchase).",
    "BLOCKRECEIPT_MINTER_URL": "Fallback mint service base URL (POST <url>/mint).",
    "BLOCKRECEIPT_METADATA_URL": "Encrypted metadata store base URL (POST <url>/metadata).",
    "BLOCKRECEIPT_HTTP_CONNECT_TIMEOUT_SECONDS": "HTTP connect timeout (default: 5).",
    "BLOCKRECEIPT_HTTP_READ_TIMEOUT_SECONDS": "HTTP read timeout (default: 30).",
}
