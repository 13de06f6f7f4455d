"""
Concept Tracker — Users & Roles

Sign-in gatekeeping and the admin user list. Only accounts with an active
profile row may use the dashboard; roles are always read fresh from the
backend before a privileged change.
"""

import logging
from typing import List, Optional, Tuple

from . import config as cfg
from .errors import ACCESS_DENIED, ConceptTrackerError, ForbiddenError
from .gateway import ConceptGateway
from .models import UserProfile

logger = logging.getLogger(__name__)

NO_ACTIVE_PROFILE = "This account has no active profile. Contact an administrator."


class UserDirectory:
    def __init__(self, gateway: ConceptGateway):
        self.gateway = gateway

    def sign_in(self, email: str, password: str) -> Tuple[Optional[UserProfile], Optional[str]]:
        """
        Authenticate, then require an active profile; anything else signs
        the user straight back out.
        """
        ok, error = self.gateway.login(email, password)
        if not ok:
            return None, error
        profile = self.current_profile()
        if not profile or not profile.is_active:
            logger.warning(f"{email} has no active profile, signing out")
            self.gateway.logout()
            return None, NO_ACTIVE_PROFILE
        return profile, None

    def sign_up(self, email: str, password: str, display_name: str = None) -> Tuple[bool, Optional[str]]:
        return self.gateway.signup(email, password, display_name)

    def sign_out(self) -> None:
        self.gateway.logout()

    def current_profile(self) -> Optional[UserProfile]:
        try:
            return self.gateway.get_profile()
        except ConceptTrackerError as e:
            logger.warning(f"Profile lookup failed: {e}")
            return None

    def list_profiles(self) -> Tuple[List[UserProfile], Optional[str]]:
        """All profiles, newest first (admins only)."""
        try:
            self.gateway.require_role(cfg.ROLE_ADMIN, cfg.ROLE_SUPER_ADMIN)
            return self.gateway.list_profiles(), None
        except ForbiddenError:
            return [], ACCESS_DENIED
        except ConceptTrackerError as e:
            return [], str(e)

    def update_role(self, user_id: str, role: str) -> Tuple[bool, Optional[str]]:
        """Change a user's role (super-admins only). Audited."""
        if role not in cfg.ROLES:
            return False, f"Unknown role: {role}"
        try:
            self.gateway.require_role(cfg.ROLE_SUPER_ADMIN)
            self.gateway.update_profile(user_id, role=role)
        except ForbiddenError:
            return False, ACCESS_DENIED
        except ConceptTrackerError as e:
            return False, str(e)
        self.gateway.log_audit("update_role", "user", user_id, {"role": role})
        return True, None

    def set_active(self, user_id: str, is_active: bool) -> Tuple[bool, Optional[str]]:
        try:
            self.gateway.require_role(cfg.ROLE_SUPER_ADMIN)
            self.gateway.update_profile(user_id, is_active=is_active)
        except ForbiddenError:
            return False, ACCESS_DENIED
        except ConceptTrackerError as e:
            return False, str(e)
        self.gateway.log_audit("update_status", "user", user_id, {"is_active": is_active})
        return True, None
