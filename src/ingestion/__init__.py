"""
WasteWatch - External Data Clients
"""

from src.ingestion.geocoder import NominatimGeocoder

__all__ = ["NominatimGeocoder"]
