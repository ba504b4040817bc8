"""Human-aware timed-elastic-band local planning."""

__version__ = "0.1.0"
