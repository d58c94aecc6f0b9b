"""API adapters.

This module provides adapters for API-based data sources:
- Generic REST endpoints
- Google Sheets
- Webhook receivers
- PlayFab
- Unity Gaming Services
- Firebase
"""

from gameinsights.adapters.datasource.api.firebase import FirebaseAdapter
from gameinsights.adapters.datasource.api.google_sheets import GoogleSheetsAdapter
from gameinsights.adapters.datasource.api.playfab import PlayFabAdapter
from gameinsights.adapters.datasource.api.rest import RestAPIAdapter
from gameinsights.adapters.datasource.api.unity import UnityAdapter
from gameinsights.adapters.datasource.api.webhook import WebhookAdapter

__all__ = [
    "FirebaseAdapter",
    "GoogleSheetsAdapter",
    "PlayFabAdapter",
    "RestAPIAdapter",
    "UnityAdapter",
    "WebhookAdapter",
]
