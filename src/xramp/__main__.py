# src/xramp/__main__.py
"""Allow ``python -m xramp`` to start the operator bot."""
from xramp.app import main

main()
