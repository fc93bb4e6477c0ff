# test_imports.py
import importlib

import pytest


@pytest.mark.parametrize("module", [
    "usage_meter.core.periods",
    "usage_meter.core.aggregator",
    "usage_meter.core.calendar_grid",
    "usage_meter.core.activity",
    "usage_meter.storage.repository",
    "usage_meter.config.loader",
    "usage_meter.api",
    "usage_meter.cli.main",
])
def test_module_imports(module):
    """Every public module imports cleanly."""
    assert importlib.import_module(module) is not None


def test_api_exports():
    """The API package exposes both UI-facing services."""
    from usage_meter.api import CalendarAPI, UsageAPI
    assert UsageAPI.log_usage
    assert CalendarAPI.get_month_grid
