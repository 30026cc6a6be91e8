"""
Command-line entry point for running APIRunner from a source checkout.

Examples:
    python run.py run --collections users --variables env=qa
    python run.py list --dependencies
    python run.py freeze
"""

from apirunner.cli import main

if __name__ == "__main__":
    main()
