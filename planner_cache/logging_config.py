import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Iterable

# Third-party loggers that are chatty at INFO (connection handshakes, keepalives).
NOISY_LOGGERS = ("websockets", "urllib3")


def setup_logging(
    level: str = "INFO",
    component: str = "planner_cache",
    subdir: str = "default",
    base_dir: str | Path = "logs",
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> Path:
    """
    Configure logging for a cache/sync process:
      - Console (stdout)
      - Daily log file in logs/<component>/<subdir>/YYYY-MM-DD.log (UTC date)
      - Loggers listed in `quiet` are capped at WARNING

    Sync failures only surface here (they are never raised to callers), so the
    file handler is always installed.

    Returns:
      Path to the "current" daily log file.
    """

    log_dir = Path(base_dir) / component / subdir
    log_dir.mkdir(parents=True, exist_ok=True)
    date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    log_path = log_dir / f"{date_str}.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setFormatter(fmt)
    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    root.addHandler(fh)
    root.addHandler(sh)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
    return log_path
