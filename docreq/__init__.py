"""
Document request tracker: request lifecycle, notification fan-out,
file security, and retention for organization document requests.
"""

__version__ = "0.1.0"
