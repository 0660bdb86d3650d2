"""
Bridge Session State
====================
The session held by the Session Manager and the key-value stores the token
is persisted to between runs.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# Well-known key the session token is persisted under
TOKEN_KEY = "mt5_token"


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTH_EXPIRED = "auth_expired"


@dataclass(frozen=True)
class Session:
    """Live bridge session. Replaced, never mutated."""
    token: str
    base_endpoint: str
    account: Optional[str] = None

    def __repr__(self) -> str:
        return f"Session({mask_token(self.token)} @ {self.base_endpoint}, account={self.account})"


def mask_token(token: Optional[str]) -> str:
    """Render a token for logs without exposing it."""
    if not token:
        return "<none>"
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}…{token[-4:]}"


class TokenStore(ABC):
    """Key-value store the session token is persisted to."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class MemoryTokenStore(TokenStore):
    """Process-local store (tests, single-run scripts)."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class FileTokenStore(TokenStore):
    """
    JSON file store, so a CLI can reuse the session across invocations.

    A missing or corrupt file reads as empty.
    """

    def __init__(self, path: str = "data/mt5_session.json"):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable token file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(data, f)

    def get(self, key: str) -> Optional[str]:
        value = self._load().get(key)
        return value if isinstance(value, str) and value else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)
