# Import all models so Base.metadata knows every table
from app.models.user import User
from app.models.comment import Comment

__all__ = [
    "User",
    "Comment",
]
