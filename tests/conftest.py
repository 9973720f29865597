from __future__ import annotations

import pytest

from tests.helpers.modules import make_host


@pytest.fixture
def host(tmp_path):
    """
    Isolated module host rooted at tmp_path: modules/ and storage/modhost/ under it.
    """
    return make_host(tmp_path)


@pytest.fixture
def modules_root(host):
    return host.paths.modules_root
