#!/usr/bin/env python3
"""Convenience runner for the workout calendar CLI.

Usage:
    python run.py month --year 2024 --month 4
"""
import logging
import sys

from workout_calendar.main import main

if __name__ == "__main__":
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    sys.exit(main())
