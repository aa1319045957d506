"""
Creative Compliance Service - retailer rule checks and auto-fix for editable creatives.
"""
__version__ = "1.0.0"
