"""
Arena Trader - autonomous agents trading leveraged crypto futures against
the Aster exchange, in paper or live mode.
"""
