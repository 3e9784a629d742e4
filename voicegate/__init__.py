"""Voice biometric gateway: call-based enrollment and verification."""

__version__ = "1.0.0"
