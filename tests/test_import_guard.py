from __future__ import annotations

import importlib
import importlib.machinery
import os
import sys

import pytest

from modhost.core.modules.import_guard import ManifestScanImportGuard


def test_guard_blocks_imports_from_modules_root(monkeypatch, tmp_path):
    root = tmp_path / "modules"
    os.makedirs(root)
    (root / "sneaky_mod_xyz.py").write_text("VALUE = 1\n", encoding="utf-8")
    monkeypatch.setattr(sys, "path", [str(root)] + list(sys.path))

    guard = ManifestScanImportGuard(modules_root=str(root))
    with guard:
        with pytest.raises(ImportError):
            importlib.import_module("sneaky_mod_xyz")
    assert guard.attempts and guard.attempts[0]["module"] == "sneaky_mod_xyz"
    assert "sneaky_mod_xyz" not in sys.modules
    assert guard not in sys.meta_path


def test_guard_allows_unrelated_imports(tmp_path):
    with ManifestScanImportGuard(modules_root=str(tmp_path)):
        mod = importlib.import_module("json")
    assert mod.dumps({}) == "{}"


def test_guards_exiting_out_of_order_restore_loader(monkeypatch, tmp_path):
    original = importlib.machinery.SourceFileLoader.exec_module
    root = tmp_path / "modules"
    os.makedirs(root)
    (root / "late_mod_xyz.py").write_text("VALUE = 2\n", encoding="utf-8")
    monkeypatch.setattr(sys, "path", [str(root)] + list(sys.path))

    outer = ManifestScanImportGuard(modules_root=str(root))
    inner = ManifestScanImportGuard(modules_root=str(tmp_path / "elsewhere"))
    outer.__enter__()
    inner.__enter__()
    outer.__exit__(None, None, None)
    assert importlib.machinery.SourceFileLoader.exec_module is not original
    inner.__exit__(None, None, None)

    assert importlib.machinery.SourceFileLoader.exec_module is original
    assert outer not in sys.meta_path and inner not in sys.meta_path
    mod = importlib.import_module("late_mod_xyz")
    assert mod.VALUE == 2
    sys.modules.pop("late_mod_xyz", None)
