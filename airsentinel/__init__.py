"""
AirSentinel - live aircraft state acquisition and anomaly detection.
"""

__version__ = "1.0.0"
