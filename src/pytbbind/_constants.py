"""Internal constants shared across the library."""

BASE_URL = "http://localhost:8080"
USER_AGENT = "pytbbind"
AUTH_HEADER = "X-Authorization"

DEFAULT_ENTITY_TYPE = "DEVICE"
DEFAULT_ATTRIBUTE_SCOPE = "SHARED_SCOPE"

# ------------------------------------------------------------------
# Backend endpoints
# ------------------------------------------------------------------

TIMESERIES_VALUES_PATH = "/api/plugins/telemetry/{entity_type}/{entity_id}/values/timeseries"
ATTRIBUTE_VALUES_PATH = "/api/plugins/telemetry/{entity_type}/{entity_id}/values/attributes/{scope}"
TIMESERIES_WRITE_PATH = "/api/plugins/telemetry/{entity_type}/{entity_id}/timeseries/ANY"
WEBSOCKET_PATH = "/api/ws/plugins/telemetry"

LATEST_TELEMETRY_SCOPE = "LATEST_TELEMETRY"

# ------------------------------------------------------------------
# Cache timing (seconds)
# ------------------------------------------------------------------

#: Grace period before a never-cached key may be fetched again.
INITIAL_THROTTLE_S = 0.2
#: Minimum spacing between refreshes of a key that already has a value.
REFRESH_THROTTLE_S = 1.0
POLL_INTERVAL_S = 5.0
REQUEST_TIMEOUT_S = 10.0

#: Placeholder rendered for text targets without a value.
MISSING_TEXT = "--"

#: Delays between push websocket reconnect attempts; the last one repeats.
RECONNECT_BACKOFF_S = (1.0, 5.0, 30.0, 120.0)
