#!/usr/bin/env python3
"""
storyport - manuscript import and export for story projects

Simple usage:
    python storyport_cli.py init novel.json --name "The Long Road"
    python storyport_cli.py import novel.json draft.docx
    python storyport_cli.py export novel.json --format epub --output out/
"""

import sys
from pathlib import Path

# Add src to path for development
src_path = Path(__file__).parent / "src"
if src_path.exists():
    sys.path.insert(0, str(src_path))

from storyport.cli import app

if __name__ == "__main__":
    app()
