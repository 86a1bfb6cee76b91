import os
import json
import tempfile
import logging
from pathlib import Path
from typing import Any, Union

import yaml

from invoice_engine.modules.errors import PersistenceError

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def read_yaml(path: PathLike) -> Any:
    try:
        with open(path, 'r') as f:
            return yaml.safe_load(f)
    except (IOError, OSError, yaml.YAMLError) as e:
        raise PersistenceError(path, str(e)) from e


def read_json(path: PathLike) -> Any:
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except (IOError, OSError, json.JSONDecodeError) as e:
        raise PersistenceError(path, str(e)) from e


def _write_atomic(path: PathLike, text: str):
    """Writes through a sibling temp file so readers never see half a file."""
    target = Path(path)
    try:
        os.makedirs(target.parent, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w') as f:
                f.write(text)
            os.replace(tmp_path, target)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
    except (IOError, OSError) as e:
        raise PersistenceError(path, str(e)) from e
    logger.debug(f"Saved {target}")


def write_yaml(path: PathLike, data: Any):
    _write_atomic(path, yaml.safe_dump(data, sort_keys=False, allow_unicode=True))


def write_json(path: PathLike, data: Any):
    _write_atomic(path, json.dumps(data, indent=2, sort_keys=False) + "\n")
