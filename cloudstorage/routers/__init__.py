"""
API routers package.
"""
from cloudstorage.routers.files import router as files_router
from cloudstorage.routers.mpupload import router as mpupload_router
from cloudstorage.routers.user import router as user_router

__all__ = ["user_router", "files_router", "mpupload_router"]
