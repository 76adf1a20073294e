"""
Command-line interface for the HSDS validator
"""
