"""
Entry point for running warden via `python -m warden`.
"""

from .cli import main

if __name__ == "__main__":
    main()
