from restgen.models.user import User

__all__ = ["User"]
