"""FuelWatch: fraud pattern detection for fuel station sales."""

__version__ = "0.1.0"
