"""User data used to authenticate invocations.

Users must already exist on the target server; the runtime only keeps a local
mirror of their credentials (users.yaml) and picks from it.
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from config.settings import load_yaml_mapping
from errors import NotFoundError, PolicyViolationError


@dataclass(frozen=True)
class UserData:
    username: str
    password: str = field(repr=False)


class UserDataService(ABC):
    @abstractmethod
    def get_random_user(self) -> UserData:
        """Uniformly random user. Must raise NotFoundError when there are no users."""

    @abstractmethod
    def find_user_by_username(self, username: str) -> UserData | None:
        """Exact lookup; None if unknown."""


class YamlUserDataService(UserDataService):
    def __init__(self, users: Iterable[UserData], *, rng: random.Random | None = None):
        self._users: list[UserData] = []
        self._by_name: dict[str, UserData] = {}
        for u in users:
            if u.username in self._by_name:
                raise PolicyViolationError(f"Duplicate username in user data: {u.username}")
            self._users.append(u)
            self._by_name[u.username] = u
        self._rng = rng or random.Random()

    @classmethod
    def load(cls, path: Path, *, rng: random.Random | None = None) -> "YamlUserDataService":
        raw = load_yaml_mapping(path)
        entries = raw.get("users") or []
        if not isinstance(entries, list):
            raise PolicyViolationError(f"Expected 'users' to be a list in {path}")
        return cls((_parse_user(e, path) for e in entries), rng=rng)

    def __len__(self) -> int:
        return len(self._users)

    def get_random_user(self) -> UserData:
        if not self._users:
            raise NotFoundError("UserData", "<any>")
        return self._rng.choice(self._users)

    def find_user_by_username(self, username: str) -> UserData | None:
        return self._by_name.get(username)


def _parse_user(entry: Any, path: Path) -> UserData:
    if not isinstance(entry, dict):
        raise PolicyViolationError(f"Invalid user entry in {path} (expected object)")
    username = entry.get("username")
    password = entry.get("password")
    if not isinstance(username, str) or not username:
        raise PolicyViolationError(f"User entry without username in {path}")
    if not isinstance(password, str):
        raise PolicyViolationError(f"User {username} has no password in {path}")
    return UserData(username=username, password=password)
