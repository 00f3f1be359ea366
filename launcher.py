"""
Launcher script for the Protokoll voice transcription bot.

Usage:
    python launcher.py          # start the Discord bot
    python launcher.py check    # verify the OpenAI key and models
"""

import sys

from protokoll.bot.app import main

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
