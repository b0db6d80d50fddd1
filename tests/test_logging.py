import logging
from pathlib import Path

from distbuild.foundation.logging_utils import close_logger, setup_build_logger


def test_build_log_file_is_utf8(tmp_path: Path):
    logger, log_file = setup_build_logger("Foo-Bar", log_dir=str(tmp_path / "_build"))
    try:
        logger.info("Copying lib/foo.py → blib/lib/foo.py")
    finally:
        close_logger(logger)

    with open(log_file, "r", encoding="utf-8") as handle:
        content = handle.read()

    assert logger.name == "distbuild.Foo-Bar"
    assert " | INFO | Copying lib/foo.py → blib/lib/foo.py" in content


def test_stream_level_follows_quiet_and_verbose():
    quiet, log_file = setup_build_logger("quiet", quiet=True)
    verbose, _ = setup_build_logger("verbose", verbose=True)
    try:
        assert log_file is None
        assert quiet.handlers[0].level == logging.WARNING
        assert verbose.handlers[0].level == logging.DEBUG
        assert quiet.propagate is False
    finally:
        close_logger(quiet)
        close_logger(verbose)
    assert quiet.handlers == []
