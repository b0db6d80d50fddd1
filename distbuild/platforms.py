"""Platform-specific builder subclasses."""

from __future__ import annotations

import os

from distbuild.builder import Builder


class Unix(Builder):
    os_type = "Unix"


class Windows(Builder):
    """Scripts cannot carry an exec bit here; each one gets a batch launcher instead."""

    os_type = "Windows"

    def make_executable(self, *files: str) -> None:
        ext = self.props.get("script_launcher_ext") or ".bat"
        python = self.props.get("python") or "python"
        for path in files:
            if path.lower().endswith((".bat", ".cmd")):
                continue
            name = os.path.basename(path)
            launcher = self.localize(os.path.splitext(path)[0] + ext)
            with open(launcher, "w", encoding="utf-8", newline="\r\n") as handle:
                handle.write("@echo off\n")
                handle.write(f'@"{python}" "%~dp0{name}" %*\n')
            self.add_to_cleanup(os.path.splitext(path)[0] + ext)


Windows.add_property("script_launcher_ext", ".bat")


def builder_class_for(os_name: str | None = None) -> type[Builder]:
    name = (os_name or os.name).lower()
    if name == "nt" or name.startswith("win"):
        return Windows
    return Unix
