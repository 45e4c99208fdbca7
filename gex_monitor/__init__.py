"""Gamma Exposure Monitor: dealer GEX levels from a live option chain"""

__version__ = '0.1.0'
