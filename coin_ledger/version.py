"""Application version information."""

APP_VERSION = "1.0.0"
