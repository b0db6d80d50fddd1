from __future__ import annotations


class BuildError(RuntimeError):
    """Fatal build failure: unwinds the whole dispatch.

    Raised for configuration errors, prerequisite aborts and unknown actions.
    Callers tell failure categories apart by inspecting prerequisite status
    structures before deciding to abort, not by exception type.
    """

    def __init__(self, message: str, *, action: str | None = None) -> None:
        super().__init__(message)
        self.action = action
