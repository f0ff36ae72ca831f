import os
from pathlib import Path
from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[1]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)


def env_flag(name: str, default: str = "false") -> bool:
    return str(os.getenv(name, default)).strip().lower() in {"1", "true", "yes", "on"}


TEMPLATES_DIR = Path(str(os.getenv("TEMPLATES_DIR") or (_BACKEND_ROOT / "templates")).strip())
SCENARIO_STRICT = env_flag("SCENARIO_STRICT", "true")
DEFAULT_ORG = str(os.getenv("DEFAULT_ORG") or "sga").strip().lower()
DEFAULT_ROLE = str(os.getenv("DEFAULT_ROLE") or "swe").strip().lower()
FOUNDER_PREFIX = str(os.getenv("FOUNDER_PREFIX", "(Founder) "))

# 0 keeps sessions for the process lifetime
_idle_ttl = int(os.getenv("SESSION_IDLE_TTL_SEC", "0") or 0)
SESSION_IDLE_TTL_SEC = max(60, _idle_ttl) if _idle_ttl > 0 else 0
SESSION_CLEANUP_INTERVAL_SEC = max(30, int(os.getenv("SESSION_CLEANUP_INTERVAL_SEC", "120")))

WS_MAX_TEXT_BYTES = max(1024, int(os.getenv("WS_MAX_TEXT_BYTES", "65536")))
