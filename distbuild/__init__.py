"""Build, test and install Python distributions from a persisted configuration."""

__version__ = "0.1.0"
