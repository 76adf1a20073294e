"""
HTTP interface for the HSDS validator
"""
