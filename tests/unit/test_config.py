import json

import pytest

from wfmaint import config as config_module
from wfmaint.errors import InvalidArgument


def _prepare_config(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    config_file = config_dir / "config.json"
    monkeypatch.setattr(config_module, "CONFIG_DIR", config_dir)
    monkeypatch.setattr(config_module, "CONFIG_FILE", config_file)
    return config_file


def test_load_config_defaults(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)

    cfg = config_module.load_config()

    assert cfg.max_parallel_jobs == config_module.DEFAULT_MAX_PARALLEL_JOBS
    assert cfg.cache_ttl_seconds == 1800
    assert cfg.memory_limit_percent == 80.0
    assert cfg.cpu_limit_percent == 90.0
    assert cfg.rate_limit_per_minute == 60
    assert cfg.burst_size == 10
    assert cfg.enable_cache is True
    assert cfg.remote_command == "gh"
    assert cfg.cache_dir is None


def test_save_and_load_round_trip(tmp_path, monkeypatch):
    config_file = _prepare_config(tmp_path, monkeypatch)

    config_module.save_config(config_module.Config(max_parallel_jobs=6, enable_cache=False))

    stored = json.loads(config_file.read_text())
    assert stored["max_parallel_jobs"] == 6
    assert stored["enable_cache"] is False
    assert "cache_dir" not in stored

    cfg = config_module.load_config()
    assert cfg.max_parallel_jobs == 6
    assert cfg.enable_cache is False


def test_invalid_json_raises(tmp_path, monkeypatch):
    config_file = _prepare_config(tmp_path, monkeypatch)
    config_file.parent.mkdir(parents=True)
    config_file.write_text("{broken")

    with pytest.raises(InvalidArgument):
        config_module.load_config()


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_parallel_jobs": 0},
        {"cache_ttl_seconds": 59},
        {"min_parallel_jobs": 0},
        {"min_parallel_jobs": 4, "max_system_parallel_jobs": 2},
        {"memory_limit_percent": 0},
        {"cpu_limit_percent": 101},
        {"rate_limit_per_minute": 0},
        {"burst_size": -1},
        {"rate_limit_delay_seconds": -1},
        {"remote_command": "  "},
    ],
)
def test_validate_config_rejects_out_of_range(overrides):
    with pytest.raises(InvalidArgument):
        config_module.validate_config(config_module.Config(**overrides))


def test_save_config_refuses_invalid_values(tmp_path, monkeypatch):
    config_file = _prepare_config(tmp_path, monkeypatch)

    with pytest.raises(InvalidArgument):
        config_module.save_config(config_module.Config(max_parallel_jobs=0))

    assert not config_file.exists()


def test_config_from_json_coerces_strings():
    cfg = config_module.config_from_json(
        {
            "max_parallel_jobs": "3",
            "memory_limit_percent": "70.5",
            "enable_cache": "off",
            "remote_command": " gh ",
            "cache_dir": "",
        }
    )

    assert cfg.max_parallel_jobs == 3
    assert cfg.memory_limit_percent == 70.5
    assert cfg.enable_cache is False
    assert cfg.remote_command == "gh"
    assert cfg.cache_dir is None


@pytest.mark.parametrize(
    "payload",
    [
        {"max_parallel_jobs": "many"},
        {"max_parallel_jobs": True},
        {"max_parallel_jobs": 2.5},
        {"enable_cache": "maybe"},
        {"remote_command": 5},
        "[1, 2]",
        "{not json",
    ],
)
def test_config_from_json_rejects_bad_values(payload):
    with pytest.raises(InvalidArgument):
        config_module.config_from_json(payload)


def test_config_from_json_ignores_unknown_keys():
    cfg = config_module.config_from_json('{"unknown": 1, "burst_size": 4}')
    assert cfg.burst_size == 4
    assert not hasattr(cfg, "unknown")


def test_update_config_merges_with_existing(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)
    config_module.update_config_from_json({"max_parallel_jobs": 2})

    cfg = config_module.update_config_from_json({"burst_size": 3})

    assert cfg.max_parallel_jobs == 2
    assert cfg.burst_size == 3

    replaced = config_module.update_config_from_json({"burst_size": 5}, replace_all=True)
    assert replaced.max_parallel_jobs == config_module.DEFAULT_MAX_PARALLEL_JOBS


def test_reset_config_restores_defaults(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)
    config_module.update_config_from_json({"max_parallel_jobs": 7})

    cfg = config_module.reset_config()

    assert cfg == config_module.Config()
    assert config_module.load_config() == config_module.Config()


def test_config_dir_context_overrides_location(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)
    override = tmp_path / "override"

    with config_module.config_dir_context(override):
        config_module.save_config(config_module.Config(burst_size=2))
        assert config_module.config_file_path() == override.resolve() / "config.json"
        assert config_module.cache_dir() == override.resolve() / "cache"

    assert (override / "config.json").exists()
    assert config_module.load_config().burst_size == config_module.DEFAULT_BURST_SIZE


def test_config_dir_context_rejects_files(tmp_path):
    target = tmp_path / "file"
    target.write_text("x")
    with pytest.raises(NotADirectoryError):
        with config_module.config_dir_context(target):
            pass


def test_cache_dir_prefers_configured_path(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)

    assert config_module.cache_dir(config_module.Config()) == tmp_path / "config" / "cache"
    custom = config_module.Config(cache_dir=str(tmp_path / "elsewhere"))
    assert config_module.cache_dir(custom) == tmp_path / "elsewhere"


def test_set_config_dir_updates_globals(tmp_path, monkeypatch):
    _prepare_config(tmp_path, monkeypatch)

    config_module.set_config_dir(tmp_path / "new")
    assert config_module.CONFIG_FILE == (tmp_path / "new").resolve() / "config.json"

    config_module.set_config_dir(None)
    assert config_module.CONFIG_DIR == config_module.DEFAULT_CONFIG_DIR
