"""Logging, retry and HTTP pooling helpers."""
