"""flatwatch: paginated real-estate listing crawler."""

__version__ = "0.1.0"
