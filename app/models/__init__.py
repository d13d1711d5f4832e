"""
Nestmate — ORM model registry.

Importing every model here ensures that any tool that inspects
``Base.metadata`` discovers all tables automatically.
"""

from app.models.user import User

__all__ = [
    "User",
]
