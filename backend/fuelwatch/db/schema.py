"""Database schema definitions for DuckDB."""

DUCKDB_SCHEMA = """
-- =========================================
-- Master data
-- =========================================

CREATE SEQUENCE IF NOT EXISTS station_id_seq START 1;

CREATE TABLE IF NOT EXISTS stations (
    station_id INTEGER PRIMARY KEY DEFAULT nextval('station_id_seq'),
    name VARCHAR(100) NOT NULL,
    location VARCHAR(200) NOT NULL,
    code VARCHAR(20) NOT NULL UNIQUE,
    pump_count INTEGER,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- =========================================
-- Transactions
-- =========================================

CREATE SEQUENCE IF NOT EXISTS sale_id_seq START 1;

CREATE TABLE IF NOT EXISTS sales (
    sale_id BIGINT PRIMARY KEY DEFAULT nextval('sale_id_seq'),
    station_id INTEGER NOT NULL,
    sold_at TIMESTAMP NOT NULL,
    liters DOUBLE NOT NULL,
    amount DOUBLE NOT NULL,
    invoice_number VARCHAR(30) NOT NULL,
    recorded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_sales_station_time ON sales(station_id, sold_at);

-- =========================================
-- Fraud alerts
-- =========================================

CREATE TABLE IF NOT EXISTS fraud_alerts (
    alert_id VARCHAR(32) PRIMARY KEY,
    alert_type VARCHAR(40) NOT NULL,
    rule_id VARCHAR(20) NOT NULL,
    description VARCHAR(1000) NOT NULL,
    station_id INTEGER NOT NULL,
    sale_id BIGINT,
    analysis_date DATE NOT NULL,
    severity VARCHAR(10) NOT NULL,
    score DOUBLE NOT NULL DEFAULT 0,
    status VARCHAR(20) NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'confirmed', 'false_positive')),
    detected_at TIMESTAMP NOT NULL,
    resolved_at TIMESTAMP,
    resolved_by VARCHAR(50),
    resolution_comment VARCHAR(1000),
    details JSON
);

"""


def schema_statements() -> list[str]:
    """Split DUCKDB_SCHEMA into executable statements, comments removed."""
    statements = []
    for chunk in DUCKDB_SCHEMA.split(";"):
        lines = [
            line
            for line in chunk.splitlines()
            if line.strip() and not line.strip().startswith("--")
        ]
        if lines:
            statements.append("\n".join(lines))
    return statements
