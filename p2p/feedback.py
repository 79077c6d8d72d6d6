"""
Feedback — the user-facing port of the trade views.

Views never render; they toast, navigate and ask for confirmation through
this interface. A browser shell, a CLI or a test double implements it.
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

TRADES_PATH = "/p2p/trades"


def trade_path(trade_id) -> str:
    return f"{TRADES_PATH}/{trade_id}"


def confirm_path(trade_id) -> str:
    return f"/p2p/confirm/{trade_id}"


class Feedback(ABC):

    @abstractmethod
    def toast(self, message: str) -> None:
        """Show a transient message."""

    @abstractmethod
    def navigate(self, path: str) -> None:
        """Leave the current view for path."""

    @abstractmethod
    def confirm(self, question: str) -> bool:
        """Ask a yes/no question; True means the user agreed."""


class LoggingFeedback(Feedback):
    """Headless feedback: logs toasts and navigation, auto-answers confirmations."""

    def __init__(self, auto_confirm=False):
        self.auto_confirm = auto_confirm
        self.location = None

    def toast(self, message):
        logger.info("toast: %s", message)

    def navigate(self, path):
        self.location = path
        logger.info("navigate: %s", path)

    def confirm(self, question):
        logger.info("confirm: %s -> %s", question, self.auto_confirm)
        return self.auto_confirm
