"""facescan: biometric face matching for an officer scanning station."""

__version__ = "1.0.0"
