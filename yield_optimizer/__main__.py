#!/usr/bin/env python3
"""Entry point for ``python -m yield_optimizer``."""
from .cli import main

if __name__ == "__main__":
    main()
