from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(log_dir: Optional[Union[str, Path]] = "logs", level: Union[int, str] = logging.INFO) -> logging.Logger:
    """Route every module logger to stderr and, if log_dir is set, logs/bot.log."""
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    fmt = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(fmt)
    root.addHandler(stream_handler)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path / "bot.log", encoding="utf-8")
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    # aiohttp is chatty at INFO on connection churn
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    return root


def read_json(path: Path) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def write_json_atomic(path: Path, obj: Any, *, indent: Optional[int] = 2) -> None:
    """Write JSON next to the target and rename over it, so readers never see half a file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(obj, f, indent=indent)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def file_age_s(path: Path, now: Optional[float] = None) -> Optional[float]:
    """Seconds since last modification, None if the file is missing."""
    try:
        mtime = Path(path).stat().st_mtime
    except FileNotFoundError:
        return None
    return float(now if now is not None else time.time()) - mtime
