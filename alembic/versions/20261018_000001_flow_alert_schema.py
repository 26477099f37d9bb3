"""Flow alert schema.

Preferences, push tokens, river reference data, forecast and
return-period caches, and alert history.

Timestamps are TIMESTAMP WITHOUT TIME ZONE holding UTC; the ORM layer
(UTCDateTime) converts on the way in and out.

Revision ID: flow_alert_001
Revises:
Create Date: 2026-10-18
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "flow_alert_001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ──────────────────────────────────────────────────────────────────────
    # 1. User-owned records
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS notification_preferences (
        user_id                 VARCHAR(128) PRIMARY KEY,
        enabled                 BOOLEAN NOT NULL DEFAULT FALSE,
        monitored_river_ids     JSONB NOT NULL DEFAULT '[]',
        include_short_range     BOOLEAN NOT NULL DEFAULT TRUE,
        include_medium_range    BOOLEAN NOT NULL DEFAULT TRUE,
        quiet_hours_enabled     BOOLEAN NOT NULL DEFAULT FALSE,
        quiet_hour_start        INTEGER DEFAULT 22,
        quiet_minute_start      INTEGER DEFAULT 0,
        quiet_hour_end          INTEGER DEFAULT 7,
        quiet_minute_end        INTEGER DEFAULT 0,
        updated_at              TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_notification_preferences_enabled "
        "ON notification_preferences(enabled)"
    )

    op.execute("""
    CREATE TABLE IF NOT EXISTS push_tokens (
        user_id     VARCHAR(128) PRIMARY KEY,
        token       VARCHAR(512) NOT NULL,
        updated_at  TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)

    # ──────────────────────────────────────────────────────────────────────
    # 2. River reference data
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS river_mappings (
        river_id        VARCHAR(128) PRIMARY KEY,
        noaa_reach_id   VARCHAR(32),
        comid           VARCHAR(32),
        reach_id        VARCHAR(32)
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS stations (
        station_id      VARCHAR(128) PRIMARY KEY,
        name            VARCHAR(255),
        noaa_reach_id   VARCHAR(32),
        comid           VARCHAR(32),
        reach_id        VARCHAR(32)
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS rivers (
        river_id    VARCHAR(128) PRIMARY KEY,
        name        VARCHAR(255)
    )
    """)

    # ──────────────────────────────────────────────────────────────────────
    # 3. Caches
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS forecast_cache (
        river_id                VARCHAR(128) PRIMARY KEY,
        external_id             VARCHAR(128) NOT NULL,
        short_range_forecasts   JSONB NOT NULL DEFAULT '[]',
        medium_range_forecasts  JSONB NOT NULL DEFAULT '[]',
        last_updated            TIMESTAMP NOT NULL
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS return_period_cache (
        river_id    VARCHAR(128) PRIMARY KEY,
        document    JSONB NOT NULL
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS return_periods (
        river_id    VARCHAR(128) PRIMARY KEY,
        document    JSONB NOT NULL
    )
    """)

    # ──────────────────────────────────────────────────────────────────────
    # 4. Alert history
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS flow_alert_history (
        user_id             VARCHAR(128) NOT NULL,
        alert_id            VARCHAR(255) NOT NULL,
        river_id            VARCHAR(128) NOT NULL,
        river_name          VARCHAR(255) NOT NULL,
        forecasted_flow     DOUBLE PRECISION NOT NULL,
        flow_unit           VARCHAR(8) NOT NULL,
        return_period       INTEGER NOT NULL,
        return_period_flow  DOUBLE PRECISION NOT NULL,
        forecast_range      VARCHAR(16) NOT NULL,
        forecast_date_time  TIMESTAMP NOT NULL,
        alert_triggered_at  TIMESTAMP NOT NULL,
        severity            VARCHAR(20) NOT NULL,
        sent                BOOLEAN NOT NULL DEFAULT FALSE,
        sent_at             TIMESTAMP,
        PRIMARY KEY (user_id, alert_id)
    )
    """)
    op.execute("""
    CREATE INDEX IF NOT EXISTS ix_flow_alert_history_dedup
        ON flow_alert_history(user_id, river_id, return_period, alert_triggered_at)
    """)


def downgrade() -> None:
    drop_order = [
        "flow_alert_history",
        "return_periods",
        "return_period_cache",
        "forecast_cache",
        "rivers",
        "stations",
        "river_mappings",
        "push_tokens",
        "notification_preferences",
    ]
    for tbl in drop_order:
        op.execute(f"DROP TABLE IF EXISTS {tbl} CASCADE")
