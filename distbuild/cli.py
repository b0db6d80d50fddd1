from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Sequence

from buildkit.errors import BuildError
from distbuild.builder import CONFIGURE_ACTION, Builder, resolve_build_class
from distbuild.foundation.args import read_args
from distbuild.foundation.config_io import load_project_config
from distbuild.foundation.logging_utils import close_logger, setup_build_logger
from distbuild.platforms import builder_class_for


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="distbuild",
        add_help=True,
        description="Configure with `distbuild configure`, then run any action, e.g. `distbuild test verbose=1`.",
    )
    parser.add_argument("--base-dir", default=None, help="Distribution root (default: current directory)")
    parser.add_argument("--config", default=None, help="Project YAML config (default: distbuild.yaml)")
    parser.add_argument("--config-dir", default="_build", help="Where the build configuration is kept")
    parser.add_argument("--log", action="store_true", help="Also write <config-dir>/build.log")
    parser.add_argument("argv", nargs=argparse.REMAINDER, help="Action followed by build arguments")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    ns = build_parser().parse_args(list(argv) if argv is not None else None)
    base_dir = os.path.abspath(ns.base_dir or os.getcwd())
    tokens = list(ns.argv)

    try:
        peeked, action = read_args(tokens)
    except BuildError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    logger, _log_file = setup_build_logger(
        os.path.basename(base_dir),
        log_dir=os.path.join(base_dir, ns.config_dir) if ns.log else None,
        quiet=bool(peeked.get("quiet")),
        verbose=bool(peeked.get("verbose")),
    )

    try:
        if action == CONFIGURE_ACTION:
            cfg, meta = load_project_config(base_dir=base_dir, config_path=ns.config)
            logger.debug("Loaded project config (mode=%s, paths=%s)", meta["mode"], meta["paths"])
            build_class = cfg.pop("build_class", None)
            klass = resolve_build_class(build_class) if build_class else builder_class_for()
            builder = klass.new(tokens, base_dir=base_dir, config_dir=ns.config_dir, logger=logger, **cfg)
            builder.create_build_config()
            return 0

        builder = Builder.resume(base_dir, tokens, config_dir=ns.config_dir, logger=logger)
        builder.dispatch()
        summary = ", ".join(f"{record['action']}={record['elapsed']:.2f}s" for record in builder.last_run())
        logger.debug("Run summary: %s", summary or "<nothing ran>")
        return 0
    except (BuildError, ValueError) as exc:
        logger.error("ERROR: %s", exc)
        return 1
    finally:
        close_logger(logger)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
