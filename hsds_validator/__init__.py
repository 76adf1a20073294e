"""
Open Referral (HSDS) data validator

Validates CSV resources, uploaded archives and remote data packages against
the Open Referral resource schemas.
"""

__version__ = "1.0.0"
