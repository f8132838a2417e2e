from .fingerprint import compute_fingerprint
from .result_cache import CacheStats, ResultCache
from .single_flight import FlightCancelled, SingleFlightGroup

__all__ = ["compute_fingerprint", "CacheStats", "ResultCache", "FlightCancelled", "SingleFlightGroup"]
