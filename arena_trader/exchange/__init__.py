"""
Exchange access - Aster futures v3 client, request signing and the paper
order client used by simulated agents.

Import submodules directly; this package keeps no import-time side effects so
that schemas can depend on order_state without cycles.
"""
