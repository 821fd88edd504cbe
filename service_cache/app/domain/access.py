"""
Token-based access control.
"""

from typing import Iterable

from shared.logging import get_logger, mask_token
from shared.errors import UnauthorizedError


class AccessControl:
    """Static set of tokens allowed to fetch and clear."""

    def __init__(self, tokens: Iterable[str]):
        self._tokens = frozenset(tokens)
        self.logger = get_logger("cache.access")

    def is_valid(self, token: str) -> bool:
        return token in self._tokens

    def require(self, token: str) -> None:
        """Raise :class:`UnauthorizedError` unless ``token`` is configured."""
        if not self.is_valid(token):
            self.logger.warning("Rejected token", token=mask_token(token))
            raise UnauthorizedError()

    def __len__(self) -> int:
        return len(self._tokens)
