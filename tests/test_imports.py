# test_imports.py
import importlib

import pytest


@pytest.mark.parametrize("module", [
    "usage_gateway.config.loader",
    "usage_gateway.logging_setup",
    "usage_gateway.core.aggregator",
    "usage_gateway.core.collection",
    "usage_gateway.sdk",
    "usage_gateway.storage.repository",
    "usage_gateway.api",
    "usage_gateway.cli.main",
])
def test_module_imports(module):
    assert importlib.import_module(module) is not None
