from __future__ import annotations

import importlib.abc
import importlib.machinery
import os
import sys
import threading
from typing import Any, Dict, Iterable, List, Optional

# SourceFileLoader.exec_module is patched once for all active guards and
# restored when the last one exits, whatever order guards exit in.
_PATCH_LOCK = threading.Lock()
_ACTIVE: List["ManifestScanImportGuard"] = []
_orig_exec_module: Any = None


def _exec_module(loader, module):  # noqa: ANN001
    for guard in list(_ACTIVE):
        guard._check_exec(loader, module)
    return _orig_exec_module(loader, module)


class ManifestScanImportGuard(importlib.abc.MetaPathFinder):
    """
    Blocks any import that would load code from under the modules root while
    manifests are being scanned. Records the attempt and raises ImportError.
    """

    def __init__(self, *, modules_root: str):
        self.modules_root = os.path.abspath(str(modules_root)) if modules_root else ""
        self.attempts: List[Dict[str, Optional[str]]] = []
        self._installed = False

    def _inside_root(self, origin: Optional[str]) -> bool:
        if not origin or not self.modules_root:
            return False
        origin_abs = os.path.abspath(str(origin))
        return origin_abs == self.modules_root or origin_abs.startswith(self.modules_root + os.sep)

    def _block(self, fullname: str, origin: Optional[str]) -> None:
        self.attempts.append({"module": fullname, "origin": origin})
        raise ImportError(f"Import blocked while scanning module manifests: {fullname} ({origin})")

    def find_spec(self, fullname: str, path=None, target=None):  # noqa: ANN001
        spec = importlib.machinery.PathFinder.find_spec(fullname, path, target)
        if spec is None:
            return None
        if self._inside_root(getattr(spec, "origin", None)):
            self._block(fullname, spec.origin)
        locations: Optional[Iterable[str]] = getattr(spec, "submodule_search_locations", None)
        for loc in locations or ():
            if self._inside_root(str(loc)):
                self._block(fullname, str(loc))
        # defer to the regular finders for everything else
        return None

    def _check_exec(self, loader, module) -> None:  # noqa: ANN001
        origin = getattr(loader, "path", None) or getattr(getattr(module, "__spec__", None), "origin", None)
        if self._inside_root(origin):
            self._block(getattr(module, "__name__", "unknown"), origin)

    def __enter__(self) -> "ManifestScanImportGuard":
        global _orig_exec_module
        with _PATCH_LOCK:
            if self._installed:
                return self
            if not _ACTIVE:
                _orig_exec_module = importlib.machinery.SourceFileLoader.exec_module
                importlib.machinery.SourceFileLoader.exec_module = _exec_module
            _ACTIVE.append(self)
            sys.meta_path.insert(0, self)
            self._installed = True
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        with _PATCH_LOCK:
            if not self._installed:
                return None
            _ACTIVE.remove(self)
            if self in sys.meta_path:
                sys.meta_path.remove(self)
            if not _ACTIVE:
                importlib.machinery.SourceFileLoader.exec_module = _orig_exec_module
            self._installed = False
        return None
