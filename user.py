from __future__ import annotations

from typing import Any, Mapping

USER_TYPES = ("user", "renter")


class User:
    """A registered account. The password hash never leaves the store layer."""

    def __init__(self, id: int, username: str, user_type: str) -> None:
        self.id = id
        self.username = username
        self.user_type = user_type

    @property
    def is_renter(self) -> bool:
        return self.user_type == "renter"

    def to_dict(self) -> dict:
        return {"id": self.id, "username": self.username, "user_type": self.user_type}

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "User":
        return User(id=row["id"], username=row["username"], user_type=row["user_type"])
