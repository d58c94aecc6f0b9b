"""SQL adapters.

- PostgreSQL through the HTTP query proxy
- Supabase through PostgREST
"""

from gameinsights.adapters.datasource.sql.postgres import PostgreSQLAdapter
from gameinsights.adapters.datasource.sql.supabase import SupabaseAdapter

__all__ = ["PostgreSQLAdapter", "SupabaseAdapter"]
