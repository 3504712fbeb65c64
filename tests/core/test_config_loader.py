"""Tests for config_loader module."""

import json

import pytest

from chainforge.core import config_loader
from chainforge.core.config_loader import load_config, load_json, load_skeleton_config


def test_load_json(tmp_path):
    path = tmp_path / "data.json"
    path.write_text(json.dumps({"a": [1, 2, 3]}))
    assert load_json(path) == {"a": [1, 2, 3]}


def test_load_json_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_json(tmp_path / "nope.json")


def test_load_json_malformed(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json")
    with pytest.raises(ValueError):
        load_json(path)


def test_bundled_solver_config():
    data = load_config("ik_solver.json")
    assert data["iterations"] > 0
    assert data["accept_distance"] > 0


def test_skeleton_config_extension_optional(monkeypatch, tmp_path):
    (tmp_path / "arm.json").write_text(json.dumps({"nodes": []}))
    monkeypatch.setattr(config_loader, "SKELETON_CONFIG_DIR", tmp_path)
    assert load_skeleton_config("arm") == {"nodes": []}
    assert load_skeleton_config("arm.json") == {"nodes": []}
