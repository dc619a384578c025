"""Artifact sinks."""

from .json_file_sink import SHARD_SCHEMA, JsonFileSink, safe_name, shard_filename

__all__ = ["SHARD_SCHEMA", "JsonFileSink", "safe_name", "shard_filename"]
