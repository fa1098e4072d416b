import logging
from datetime import datetime
from pathlib import Path
from typing import Optional


def setup_logging(
    level: str = "INFO",
    component: str = "mirror",
    subdir: str = "default",
    base_dir: str | Path | None = None,
) -> Optional[Path]:
    """
    Configure logging:
      - Console (stderr, so stdout stays free for the depth table)
      - Optional daily log file in <base_dir>/<component>/<subdir>/YYYY-MM-DD.log

    Returns:
      Path to the daily log file, or None when only the console is used.
    """

    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    root.addHandler(sh)

    if not base_dir:
        return None

    log_dir = Path(base_dir) / component / subdir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"{datetime.now().strftime('%Y-%m-%d')}.log"
    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setFormatter(fmt)
    root.addHandler(fh)
    return log_path
