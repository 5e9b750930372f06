"""Database schema for the Multi-RPC dashboard.

Tables:
- Accounts (users, user_settings)
- API Keys & Usage (api_keys, usage, method_stats)
- Billing (subscriptions, invoices)
- Endpoints & Monitoring (custom_endpoints, endpoint_alerts)
"""

# =============================================================================
# ACCOUNTS
# =============================================================================

USERS_TABLE = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    privy_id TEXT UNIQUE NOT NULL,
    email TEXT UNIQUE,
    password_hash TEXT,
    wallet_address TEXT,
    wallet_type TEXT,
    name TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_user_createdat ON users(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_user_email_lower ON users(LOWER(email));
"""

USER_SETTINGS_TABLE = """
CREATE TABLE IF NOT EXISTS user_settings (
    user_id TEXT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
    settings TEXT NOT NULL,  -- JSON document
    updated_at TEXT NOT NULL
);
"""

# =============================================================================
# API KEYS & USAGE
# =============================================================================

API_KEYS_TABLE = """
CREATE TABLE IF NOT EXISTS api_keys (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    key_hash TEXT UNIQUE NOT NULL,  -- sha256 of the plaintext key
    prefix TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    rate_limit INTEGER NOT NULL DEFAULT 10,  -- requests per second
    daily_limit INTEGER NOT NULL DEFAULT 10000,
    monthly_limit INTEGER NOT NULL DEFAULT 100000,
    created_at TEXT NOT NULL,
    last_used_at TEXT,
    expires_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_apikey_userid_active ON api_keys(user_id, active);
CREATE INDEX IF NOT EXISTS idx_apikey_lastused ON api_keys(last_used_at DESC);
CREATE INDEX IF NOT EXISTS idx_apikey_createdat ON api_keys(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_apikey_active_partial ON api_keys(user_id) WHERE active = 1;
CREATE INDEX IF NOT EXISTS idx_apikey_name_lower ON api_keys(LOWER(name));
"""

USAGE_TABLE = """
CREATE TABLE IF NOT EXISTS usage (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    api_key_id TEXT NOT NULL DEFAULT '',  -- empty for dashboard traffic
    date TEXT NOT NULL,  -- YYYY-MM-DD (UTC)
    requests INTEGER NOT NULL DEFAULT 0,
    success_count INTEGER NOT NULL DEFAULT 0,
    error_count INTEGER NOT NULL DEFAULT 0,
    bytes_in INTEGER NOT NULL DEFAULT 0,
    bytes_out INTEGER NOT NULL DEFAULT 0,
    UNIQUE(user_id, api_key_id, date)
);

CREATE INDEX IF NOT EXISTS idx_usage_userid_date ON usage(user_id, date DESC);
CREATE INDEX IF NOT EXISTS idx_usage_apikey_date ON usage(api_key_id, date DESC);
CREATE INDEX IF NOT EXISTS idx_usage_requests ON usage(requests DESC);
"""

METHOD_STATS_TABLE = """
CREATE TABLE IF NOT EXISTS method_stats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    date TEXT NOT NULL,
    hour INTEGER NOT NULL,  -- 0-23 (UTC)
    method TEXT NOT NULL,
    endpoint TEXT NOT NULL DEFAULT '',
    requests INTEGER NOT NULL DEFAULT 0,
    errors INTEGER NOT NULL DEFAULT 0,
    total_latency_ms INTEGER NOT NULL DEFAULT 0,
    UNIQUE(user_id, date, hour, method, endpoint)
);

CREATE INDEX IF NOT EXISTS idx_method_stats_user_date ON method_stats(user_id, date DESC);
"""

# =============================================================================
# BILLING
# =============================================================================

SUBSCRIPTIONS_TABLE = """
CREATE TABLE IF NOT EXISTS subscriptions (
    id TEXT PRIMARY KEY,
    user_id TEXT UNIQUE NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    stripe_customer_id TEXT UNIQUE NOT NULL,
    stripe_subscription_id TEXT UNIQUE,
    plan TEXT NOT NULL DEFAULT 'FREE',
    status TEXT NOT NULL DEFAULT 'inactive',
    current_period_start TEXT,
    current_period_end TEXT,
    cancel_at_period_end INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CONSTRAINT valid_plan CHECK (plan IN ('FREE', 'STARTER', 'PRO', 'ENTERPRISE'))
);
"""

INVOICES_TABLE = """
CREATE TABLE IF NOT EXISTS invoices (
    id TEXT PRIMARY KEY,
    user_id TEXT REFERENCES users(id) ON DELETE SET NULL,
    stripe_invoice_id TEXT UNIQUE NOT NULL,
    amount INTEGER NOT NULL,  -- cents
    currency TEXT NOT NULL,
    status TEXT NOT NULL,
    paid_at TEXT,
    created_at TEXT NOT NULL,
    CONSTRAINT valid_status CHECK (status IN ('paid', 'failed'))
);

CREATE INDEX IF NOT EXISTS idx_invoice_userid_status ON invoices(user_id, status);
"""

# =============================================================================
# ENDPOINTS & MONITORING
# =============================================================================

CUSTOM_ENDPOINTS_TABLE = """
CREATE TABLE IF NOT EXISTS custom_endpoints (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    url TEXT NOT NULL,
    name TEXT NOT NULL,
    region TEXT NOT NULL DEFAULT 'Custom',
    healthy INTEGER NOT NULL DEFAULT 0,
    latency_ms INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_custom_endpoints_user ON custom_endpoints(user_id);
"""

ENDPOINT_ALERTS_TABLE = """
CREATE TABLE IF NOT EXISTS endpoint_alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL,
    message TEXT NOT NULL,
    endpoint TEXT NOT NULL,
    created_at TEXT NOT NULL,
    CONSTRAINT valid_type CHECK (type IN ('warning', 'info', 'error'))
);

CREATE INDEX IF NOT EXISTS idx_endpoint_alerts_created ON endpoint_alerts(created_at DESC);
"""

# =============================================================================
# SCHEMA ASSEMBLY
# =============================================================================

SCHEMA = "\n".join(
    [
        "PRAGMA foreign_keys = ON;",
        USERS_TABLE,
        USER_SETTINGS_TABLE,
        API_KEYS_TABLE,
        USAGE_TABLE,
        METHOD_STATS_TABLE,
        SUBSCRIPTIONS_TABLE,
        INVOICES_TABLE,
        CUSTOM_ENDPOINTS_TABLE,
        ENDPOINT_ALERTS_TABLE,
    ]
)
