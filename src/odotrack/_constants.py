"""Internal constants shared across the package."""

DEFAULT_DEVICE_ID = "ESP32"

# ------------------------------------------------------------------
# Odometer counter  (one byte on the device, 100 units per km)
# ------------------------------------------------------------------

COUNTER_MODULUS = 256
COUNTER_MAX = COUNTER_MODULUS - 1
COUNTER_UNITS_PER_KM = 100.0

# ------------------------------------------------------------------
# Store tables
# ------------------------------------------------------------------

TELEMETRY_TABLE = "vehicle_telemetry"
ODOMETER_TABLE = "vehicle_odometer"

# ------------------------------------------------------------------
# Default MQTT topics
# ------------------------------------------------------------------

TOPIC_TELEMETRY = "esp32mqtt/vehicle"
TOPIC_HANDSHAKE_REQUEST = "esp32mqtt/handshake/request"
TOPIC_HANDSHAKE_RESPONSE = "esp32mqtt/handshake/response"
TOPIC_ODOMETER_REQUEST = "esp32mqtt/odometer/request"
TOPIC_ODOMETER_RESPONSE = "esp32mqtt/odometer/response"

PING_STATUS = "ping"
ACK_STATUS = "ack"


def counter_delta_to_km(delta: int) -> float:
    """Convert a forward counter step to kilometres."""
    return delta / COUNTER_UNITS_PER_KM
