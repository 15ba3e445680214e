"""Authentication / authorization.

- Users table (email + password hash + `is_hoc` role flag)
- Stateless JWT bearer tokens (`Authorization: Bearer <token>`)

Protected routes depend on `get_current_user`; head-of-class routes depend on
`require_hoc`, which re-checks the role on the freshly loaded user row.
"""

from .deps import get_current_user, require_hoc
from .crud import create_user, public_user
from .security import TokenService, hash_password, verify_password

__all__ = [
    "get_current_user",
    "require_hoc",
    "create_user",
    "public_user",
    "TokenService",
    "hash_password",
    "verify_password",
]
