import os
import dotenv
import logging

dotenv.load_dotenv()

GITHUB_TOKEN = os.environ.get("GITHUB_TOKEN")

DATA_DIR = os.environ.get("DATA_DIR", "data")

OVERRIDE_LOGGING = logging.getLevelName(os.environ.get("OVERRIDE_LOGGING", "WARNING"))

TELEGRAM_TOKEN = os.environ.get("TELEGRAM_TOKEN")
TELEGRAM_CHAT_ID = os.environ.get("TELEGRAM_CHAT_ID")

GITHUB_TIMEOUT = float(os.environ.get("GITHUB_TIMEOUT", 10))

DOWNLOAD_TIMEOUT = float(os.environ.get("DOWNLOAD_TIMEOUT", 60))

SLEEP_ON_RATE_LIMIT = os.environ.get("SLEEP_ON_RATE_LIMIT", "true") == "true"

RATE_LIMIT_WARN_THRESHOLD = int(os.environ.get("RATE_LIMIT_WARN_THRESHOLD", 50))

MAX_REQUESTS_PER_SECOND = float(os.environ.get("MAX_REQUESTS_PER_SECOND", 0))

MONITOR_ARTIFACT_SUFFIX = os.environ.get("MONITOR_ARTIFACT_SUFFIX", "monitor.json")

PUSH_GATEWAY = os.environ.get("PUSH_GATEWAY")
