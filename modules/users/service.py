from sqlalchemy.orm import Session
from typing import Optional

from modules.users.models import User


class UserDirectory:
    """Read-only view of user accounts used by the referral program"""

    def __init__(self, db: Session):
        self.db = db

    def find_user(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        return self.db.query(User).filter(User.id == str(user_id)).first()
