"""cache/ -- Best-effort key/value cache shared by the engine and the CLI.

Layer rule: cache/ imports only stdlib. It does NOT import from core/.
"""
