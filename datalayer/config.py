import os
from dotenv import load_dotenv

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")

# ---- Timeouts (milliseconds) ----
SERVER_TIMEOUT_MS = int(os.getenv("SERVER_TIMEOUT_MS", "5000"))
QUERY_TIMEOUT_MS = int(os.getenv("QUERY_TIMEOUT_MS", "5000"))

# DEBUG, INFO, WARNING, ERROR or CRITICAL
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def default_options():
    """Options blob handed to the store client on connect."""
    return {
        "host": MONGO_URI,
        "serverSelectionTimeoutMS": SERVER_TIMEOUT_MS,
    }
