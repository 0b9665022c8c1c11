"""core/ -- Identifier resolution and compliance aggregation engine for PostureLens.

Layer rule: core/ imports only stdlib + third-party libraries and cache/'s
Cache protocol. It does NOT import from main.py.
"""
