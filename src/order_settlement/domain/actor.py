"""The identity performing an operation, as resolved by the (external) auth layer."""

from __future__ import annotations

from dataclasses import dataclass

from order_settlement.domain.enums import Role


@dataclass(frozen=True)
class Actor:
    """A user acting in one role.

    Attributes:
        id: External user identifier (buyer, seller, agent or admin).
        role: The role the request is made in.
    """

    id: str
    role: Role

    @classmethod
    def system(cls) -> Actor:
        return cls(id="SYSTEM", role=Role.SYSTEM)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def __str__(self) -> str:
        return f"{self.role.value}:{self.id}"
