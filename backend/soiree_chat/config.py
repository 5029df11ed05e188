import os

from dotenv import load_dotenv

load_dotenv()


def _int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017/")
DB_NAME = os.getenv("MONGO_DB_NAME", "premier_an")

DEV_JWT_SECRET = "dev-secret-change-me"
JWT_SECRET = os.getenv("JWT_SECRET") or DEV_JWT_SECRET
JWT_ALG = "HS256"
JWT_TTL_HOURS = _int("JWT_TTL_HOURS", 24)

# websocket session
WS_PING_PERIOD = _float("WS_PING_PERIOD", 54)
WS_PONG_WAIT = _float("WS_PONG_WAIT", 60)
WS_AUTH_TIMEOUT = _float("WS_AUTH_TIMEOUT", 10)
WS_MAX_FRAME_SIZE = _int("WS_MAX_FRAME_SIZE", 4096)
WS_SEND_BUFFER = _int("WS_SEND_BUFFER", 256)

# presence
PRESENCE_IDLE_TIMEOUT = _float("PRESENCE_IDLE_TIMEOUT", 240)
PRESENCE_SWEEP_INTERVAL = _float("PRESENCE_SWEEP_INTERVAL", 3600)

# push notifications
PUSH_BATCH_SIZE = _int("PUSH_BATCH_SIZE", 500)
PUSH_BODY_LIMIT = _int("PUSH_BODY_LIMIT", 100)

# store deadlines, in seconds
STORE_TIMEOUT = _float("STORE_TIMEOUT", 5)
STORE_LIST_TIMEOUT = _float("STORE_LIST_TIMEOUT", 10)
STORE_AGGREGATE_TIMEOUT = _float("STORE_AGGREGATE_TIMEOUT", 15)

CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",")
    if origin.strip()
]
