"""
Eligibility extraction and match scoring engine for government R&D funding programs.
"""

__version__ = "0.1.0"
