"""Basic import and instantiation tests."""

import pathlib

import pytest

import actioncue
from actioncue import ActionScheduler, SchedulerConfig


def test_import():
    """Public names are exported from the package."""
    for name in ("ActionScheduler", "ActionStore", "ClaimManager", "Runner", "Worker", "RetryPolicy"):
        assert hasattr(actioncue, name)
    assert actioncue.__version__


def test_scheduler_instantiation():
    """A scheduler can be built without touching the database."""
    scheduler = ActionScheduler()
    assert scheduler.config.db_path == ":memory:"
    assert scheduler.store.is_open is False


def test_components_share_the_store():
    scheduler = ActionScheduler(SchedulerConfig(batch_size=3, holder="unit"))
    assert scheduler.claims.store is scheduler.store
    assert scheduler.runner.store is scheduler.store
    assert scheduler.worker.batch_size == 3
    assert scheduler.claims.holder == "unit"


def test_simulator_package_is_packaged():
    """actioncue_sim has no __init__.py, so package discovery must include namespace packages."""
    tomllib = pytest.importorskip("tomllib")
    pyproject = pathlib.Path(__file__).resolve().parent.parent / "pyproject.toml"
    config = tomllib.loads(pyproject.read_text())

    find = config["tool"]["setuptools"]["packages"]["find"]
    assert find["namespaces"] is True
    assert "actioncue_sim" in config["project"]["scripts"]["actioncue-sim"]
