"""Adapters - Implementations of the data source contract.

- datasource/: Data source adapters (files, REST APIs, PostgreSQL, Supabase,
  Google Sheets, PlayFab, Unity)
"""
