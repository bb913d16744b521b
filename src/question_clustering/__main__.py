"""
Entry point for running question clustering as a module.

Usage:
    python3 -m question_clustering reconcile --project-id PROJECT
"""

import sys

from .main import main

if __name__ == '__main__':
    sys.exit(main())
