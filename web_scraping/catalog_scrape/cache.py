from pathlib import Path
from typing import Any, Union
import hashlib

import orjson


def key_for(url: str) -> str:
    return hashlib.sha1(url.encode()).hexdigest()


def save_snapshot(url: str, html: str, directory: Union[str, Path]) -> Path:
    """Write a page's HTML under `directory`, keyed by the URL's SHA-1."""
    out = Path(directory)
    out.mkdir(parents=True, exist_ok=True)
    path = out / f"{key_for(url)}.html"
    path.write_text(html, encoding="utf-8")
    return path


def write_json(path: Union[str, Path], obj: Any) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(orjson.dumps(obj, option=orjson.OPT_INDENT_2))
    return path
