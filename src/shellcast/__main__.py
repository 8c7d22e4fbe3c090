"""shellcast entry point.

Supports: python -m shellcast
"""

from .app import main

if __name__ == "__main__":
    main()
