#!/usr/bin/env python3
"""
main.py — Quick-start entry point.

Put RRGGBB.jpg tiles into ``samples/`` and run:

    python main.py single my_photo.jpg

Or process a whole folder:

    python -m sample_mosaic.cli batch --help
    python -m sample_mosaic.cli index my_photos/
"""

from sample_mosaic.cli import app

if __name__ == "__main__":
    app()
