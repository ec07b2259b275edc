"""
Allow running the emulator with python -m clws_emulator
"""

from .cli import main

if __name__ == '__main__':
    main()
