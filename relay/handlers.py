from __future__ import annotations

import importlib
import importlib.util
import sys
from pathlib import Path

from relay.dispatcher import Handler
from relay.errors import HandlerLoadError

DEFAULT_SPEC = "index"
DEFAULT_ATTRIBUTE = "handle"


def parse_spec(spec: str) -> tuple[str, str]:
    """Split ``target[:attr]`` where target is a module name or a .py path."""
    target, _, attr = spec.rpartition(":")
    if not target or not attr or "/" in attr or "\\" in attr or attr.endswith(".py"):
        return spec, DEFAULT_ATTRIBUTE
    return target, attr


def _is_path(target: str) -> bool:
    return target.endswith(".py") or "/" in target or "\\" in target


def _load_file(path: Path):
    if not path.is_file():
        raise HandlerLoadError(f"handler file not found: {path}")
    spec = importlib.util.spec_from_file_location(f"relay_handler_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise HandlerLoadError(f"cannot load handler file: {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def load_handler(spec: str = DEFAULT_SPEC, *, search_root: Path | None = None) -> Handler:
    target, attr = parse_spec(spec)
    root = search_root or Path.cwd()
    try:
        if _is_path(target):
            path = Path(target)
            module = _load_file(path if path.is_absolute() else root / path)
        else:
            # handler modules live next to the worker, like a local package
            if str(root) not in sys.path:
                sys.path.insert(0, str(root))
            module = importlib.import_module(target)
    except HandlerLoadError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise HandlerLoadError(f"cannot load handler {spec!r}: {exc}") from exc

    handler = getattr(module, attr, None)
    if not callable(handler):
        raise HandlerLoadError(f"handler {target!r} has no callable {attr!r}")
    return handler
