from __future__ import annotations

import json
import os
import time

from wfmaint.config import Config
from wfmaint.services import cache_service


def _config(tmp_path) -> Config:
    return Config(cache_dir=str(tmp_path / "cache"))


def test_summary_of_missing_cache_is_empty(tmp_path):
    stats = cache_service.cache_summary(_config(tmp_path))
    assert stats.entries == 0
    assert stats.total_bytes == 0


def test_clear_and_prune(tmp_path):
    cfg = _config(tmp_path)
    store = cache_service.open_cache(cfg)
    fresh = store.key_for_text("fresh")
    store.put(fresh, "a")
    stale = store.key_for_text("stale")
    store.put(stale, "b")
    entry = store.entry_path(stale)
    envelope = json.loads(entry.read_text())
    envelope["written_at"] = time.time() - 10_000
    entry.write_text(json.dumps(envelope))

    assert cache_service.cache_summary(cfg).entries == 2
    assert cache_service.prune_cache(cfg) == 1
    assert store.get(fresh) == "a"
    assert cache_service.prune_cache(cfg, max_age=3600) == 0
    assert cache_service.clear_cache(cfg) == 1
    assert os.listdir(tmp_path / "cache") == []


def test_open_cache_uses_configured_ttl(tmp_path):
    cfg = Config(cache_dir=str(tmp_path / "c"), cache_ttl_seconds=120)
    assert cache_service.open_cache(cfg).ttl == 120.0
