import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("SITEBUILDER_DATA_DIR", str(BASE_DIR / "data")))
DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_PATH = os.getenv("SITEBUILDER_DB_PATH", str(DATA_DIR / "sitebuilder.db"))
LOG_PATH = os.getenv("SITEBUILDER_LOG_PATH", str(DATA_DIR / "sitebuilder.log"))

SESSION_HOURS = int(os.getenv("SITEBUILDER_SESSION_HOURS", "8"))
COOKIE_SECURE = os.getenv("SITEBUILDER_COOKIE_SECURE", "1") not in ("0", "false", "no")

# Seeded on first start when the user table is empty
ADMIN_USERNAME = "admin"
ADMIN_EMAIL = os.getenv("SITEBUILDER_ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.getenv("SITEBUILDER_ADMIN_PASSWORD", "admin123")

KDF_ITERATIONS = int(os.getenv("SITEBUILDER_KDF_ITERATIONS", "200000"))

LOG_LEVEL = os.getenv("SITEBUILDER_LOG_LEVEL", "INFO")
LOG_TO_CONSOLE = os.getenv("SITEBUILDER_LOG_CONSOLE", "0") in ("1", "true", "yes")
