# storefront/models/identity.py

from typing import Optional
from uuid import uuid4
from pydantic import BaseModel, Field


class Identity(BaseModel):
    """A registered shop user, owned by the identity store"""
    id: str = Field(default_factory=lambda: uuid4().hex)
    email: str
    password_hash: str
    name: Optional[str] = None

    def public_view(self) -> dict:
        return {"id": self.id, "email": self.email, "name": self.name}
