"""Bundled downloads and page templates served by the application."""
