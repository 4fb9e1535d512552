"""
Runtime configuration, read once from the environment.

Environment variables:
    DB_HOST / DB_PORT / DB_NAME      PostgreSQL location
    DB_USER / DB_PASSWORD            PostgreSQL credentials
    DB_POOL_MIN / DB_POOL_MAX        asyncpg pool bounds
    JWT_SECRET / JWT_ALGORITHM       signing key for voter session tokens
    VOTE_TRANSACTION_TIMEOUT         seconds before a ballot write is abandoned
    BROADCAST_SEND_TIMEOUT           seconds a live client gets to accept one update
    AUTO_MIGRATE                     "true" to create missing tables at startup
    CORS_ORIGINS                     comma-separated list, "*" for any
    LOG_LEVEL                        root log level (default: INFO)
"""
import os

# ── Database ─────────────────────────────────────────────────────────────────
DB_HOST = os.getenv("DB_HOST", "postgres")
DB_PORT = int(os.getenv("DB_PORT", "5432"))
DB_NAME = os.getenv("DB_NAME", "ballotbox")
DB_USER = os.getenv("DB_USER", "ballotbox")
DB_PASSWORD = os.getenv("DB_PASSWORD", "ballotbox")
DB_POOL_MIN = int(os.getenv("DB_POOL_MIN", "2"))
DB_POOL_MAX = int(os.getenv("DB_POOL_MAX", "20"))

# ── Sessions ─────────────────────────────────────────────────────────────────
JWT_SECRET = os.getenv("JWT_SECRET", "your-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# ── Ballot protocol ──────────────────────────────────────────────────────────
VOTE_TRANSACTION_TIMEOUT = float(os.getenv("VOTE_TRANSACTION_TIMEOUT", "10").strip() or "10")
BROADCAST_SEND_TIMEOUT = float(os.getenv("BROADCAST_SEND_TIMEOUT", "2").strip() or "2")

# ── Service ──────────────────────────────────────────────────────────────────
AUTO_MIGRATE = os.getenv("AUTO_MIGRATE", "true").lower() == "true"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"
