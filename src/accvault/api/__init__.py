# accvault API Module - FastAPI integration helpers

from .security import (
    admin_user_dependency,
    bearer_token,
    current_user_dependency,
    install_error_handlers,
)

__all__ = [
    "bearer_token",
    "current_user_dependency",
    "admin_user_dependency",
    "install_error_handlers",
]
