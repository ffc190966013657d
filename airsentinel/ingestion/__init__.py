"""
Acquisition layer: OpenSky client, fetch gate, response cache, backoff,
credentials and the record normalizer.
"""
