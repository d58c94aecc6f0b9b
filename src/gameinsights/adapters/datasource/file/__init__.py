"""File adapters.

- Uploaded CSV, JSON and Parquet files
"""

from gameinsights.adapters.datasource.file.local import FileAdapter

__all__ = ["FileAdapter"]
