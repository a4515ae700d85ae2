"""Acting identity passed explicitly into core operations"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation (resolved upstream by the auth gateway)"""
    user_id: Optional[int] = None
    is_admin: bool = False

    @classmethod
    def system(cls) -> "Actor":
        """Identity for internal callers such as reconciliation jobs"""
        return cls(user_id=None, is_admin=True)

    def can_access(self, owner_id: int) -> bool:
        return self.is_admin or (self.user_id is not None and self.user_id == owner_id)
