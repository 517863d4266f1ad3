import logging
import os
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parents[2]
EXPORT_DIR = Path(os.getenv("DISPATCH_EXPORT_DIR", str(BASE_DIR / "exports")))

HISTORY_WINDOW = int(os.getenv("DISPATCH_HISTORY_WINDOW", "100"))
REPOSITIONING_THRESHOLD = float(os.getenv("DISPATCH_REPOSITIONING_THRESHOLD", "0.6"))
MAX_REPOSITIONS_PER_CYCLE = int(os.getenv("DISPATCH_MAX_REPOSITIONS", "3"))
UNDERSERVED_RATIO = float(os.getenv("DISPATCH_UNDERSERVED_RATIO", "1.5"))
PATH_STRATEGY = os.getenv("DISPATCH_PATH_STRATEGY", "dijkstra")
AVERAGE_SPEED_KMH = float(os.getenv("DISPATCH_AVERAGE_SPEED_KMH", "40"))

SIM_INCIDENT_RATE = float(os.getenv("DISPATCH_SIM_INCIDENT_RATE", "12.0"))
SIM_REPOSITIONING_INTERVAL = int(os.getenv("DISPATCH_SIM_REPOSITIONING_INTERVAL", "30"))
SIM_RANDOM_SEED = int(os.getenv("DISPATCH_SIM_SEED", "42"))

LOG_LEVEL = os.getenv("DISPATCH_LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("DISPATCH_LOG_FORMAT", "text")


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure root logging for entry points; library modules only create loggers."""
    log_level = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)

    if (fmt or LOG_FORMAT) == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
