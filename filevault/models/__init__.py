# import every model so Base.metadata knows about all tables
from filevault.models.database import Base
from filevault.models.file import FileMeta
from filevault.models.session import UserSession
from filevault.models.user import User

__all__ = ["Base", "FileMeta", "User", "UserSession"]
