"""
Database models package.
All models are exported here for easy import.
"""
from cloudstorage.models.user import User
from cloudstorage.models.stored_file import StoredFile
from cloudstorage.models.user_file import UserFile

__all__ = ["User", "StoredFile", "UserFile"]
