# contextchat/main.py
import sys

from contextchat.ui.application import run
from contextchat.services.logging import setup_logging

def main():
    setup_logging() # Configure logging early
    sys.exit(run(sys.argv))

if __name__ == "__main__":
    main()
