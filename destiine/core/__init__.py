from destiine.core.config import settings
from destiine.core.database import get_db, Base, get_db_session
from destiine.core.security import (
    hash_password,
    verify_password,
    create_access_token,
    decode_access_token,
)
