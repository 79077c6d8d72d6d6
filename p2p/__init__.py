"""
P2P trade lifecycle: negotiation, escrow commands, countdown, polling and
the trade views built on them.
"""

from p2p.config import Settings
from p2p.context import AppContext
