import logging
import os
import time

from buildkit.freshness import up_to_date


def _touch(path, mtime):
    path.write_text("x", encoding="utf-8")
    os.utime(path, (mtime, mtime))
    return str(path)


def test_derived_newer_than_sources_is_fresh(tmp_path):
    now = time.time()
    src = _touch(tmp_path / "a.py", now - 100)
    out = _touch(tmp_path / "a.o", now - 10)
    assert up_to_date(src, out, now=now)


def test_source_newer_than_derived_is_stale(tmp_path):
    now = time.time()
    older = _touch(tmp_path / "a.py", now - 100)
    newer = _touch(tmp_path / "b.py", now - 5)
    out = _touch(tmp_path / "a.o", now - 10)
    assert not up_to_date([older, newer], out, now=now)


def test_missing_derived_is_stale(tmp_path):
    src = _touch(tmp_path / "a.py", time.time())
    assert not up_to_date(src, [str(tmp_path / "missing.o")])


def test_missing_source_is_skipped_with_warning(tmp_path, caplog):
    now = time.time()
    out = _touch(tmp_path / "a.o", now - 10)
    with caplog.at_level(logging.WARNING):
        assert up_to_date([str(tmp_path / "gone.py")], out, now=now)
    assert "Can't find source file" in caplog.text
