"""
Cloud storage backend: chunked, resumable, deduplicated uploads.
"""
__version__ = "1.0.0"
