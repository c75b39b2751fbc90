from .api.main import create_app

__all__ = [
    "api",
    "services",
    "core",
    "create_app",
]
