#!/usr/bin/env python3
"""
Open Referral (HSDS) validator
Main entry point for the application

Usage:
    python main.py --help                        # Show help
    python main.py resources                     # List accepted resources
    python main.py validate-csv contact.csv -t contact
    python main.py validate-zip export.zip       # Validate an archive
    python main.py validate-package URI -r       # Validate a data package
    python main.py serve                         # Start web interface
"""

from hsds_validator.cli.main import main

if __name__ == '__main__':
    main()
