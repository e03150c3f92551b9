"""Allow `python -m tabkeeper`."""

from tabkeeper.cli.main import main

main()
