"""
Provider SDK for Chart Radar.

Client for the remote analysis provider.
"""

from .gateway import AnalysisOptions, ProviderGateway, ProviderResponse, SymbolQuery

__all__ = ["AnalysisOptions", "ProviderGateway", "ProviderResponse", "SymbolQuery"]
