"""
Profile directory.

WHAT: Profile registration, lookup, contact edits and guarded deletion
WHY: Every other service keys its records to a profile and its role
HOW: Lower-cased unique email, role fixed at registration, deletion refused while history exists
"""

from typing import Optional, List

from sqlalchemy import or_

from ..core.database import get_db, get_read_db
from ..core.models import Profile, Role, Transaction, Message
from .capability_gate import Caller, Action, capability_gate
from ..utils.exceptions import NotFoundError, ForbiddenError, ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

CONTACT_FIELDS = ("full_name", "location", "phone", "bio", "avatar_url")


def parse_role(value) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).lower())
    except ValueError:
        raise ValidationError(
            f"Unknown role: {value}",
            field_errors=[{"field": "role", "error": "must be 'farmer' or 'buyer'"}]
        )


class ProfileDirectory:
    """Registration and lookup of marketplace profiles."""

    def __init__(self, session_scope=get_db, read_scope=get_read_db, gate=capability_gate):
        self._session_scope = session_scope
        self._read_scope = read_scope
        self._gate = gate

    def register(self, full_name: str, email: str, role, **contact) -> Profile:
        """
        Create a profile. Credentials live with the identity provider, not here.

        Raises:
            ValidationError: email already registered, unknown role or field
        """
        role = parse_role(role)
        unknown = [name for name in contact if name not in CONTACT_FIELDS]
        if unknown:
            raise ValidationError(
                "Unknown profile fields",
                field_errors=[{"field": name, "error": "unknown field"} for name in unknown]
            )
        email = email.strip().lower()

        with self._session_scope() as db:
            if db.query(Profile).filter(Profile.email == email).first() is not None:
                raise ValidationError(
                    "Email already registered",
                    field_errors=[{"field": "email", "error": "already registered"}]
                )
            profile = Profile(full_name=full_name, email=email, role=role, **contact)
            db.add(profile)
            db.flush()
            logger.info(f"Registered {role.value} profile {profile.id}")
            return profile

    def get(self, profile_id: str) -> Profile:
        with self._read_scope() as db:
            profile = db.get(Profile, profile_id)
            if profile is None:
                raise NotFoundError("Profile", profile_id)
            return profile

    def resolve_caller(self, profile_id: Optional[str]) -> Caller:
        return self._gate.resolve_caller(profile_id)

    def contacts_for(self, caller: Caller) -> List[Profile]:
        """Profiles of the opposite role, by name: buyers see farmers, farmers see buyers."""
        other = Role.BUYER if caller.is_farmer else Role.FARMER
        with self._read_scope() as db:
            return (
                db.query(Profile)
                .filter(Profile.role == other)
                .order_by(Profile.full_name, Profile.id)
                .all()
            )

    def update_contact(self, caller: Caller, fields: dict) -> Profile:
        """Edit the caller's own contact fields. Role and email are not editable."""
        blocked = [name for name in fields if name not in CONTACT_FIELDS]
        if blocked:
            raise ValidationError(
                "Only contact fields are editable",
                field_errors=[{"field": name, "error": "not editable"} for name in blocked]
            )
        with self._session_scope() as db:
            profile = db.get(Profile, caller.profile_id)
            if profile is None:
                raise NotFoundError("Profile", caller.profile_id)
            for name, value in fields.items():
                setattr(profile, name, value)
            db.flush()
            return profile

    def delete(self, profile_id: str, caller: Caller) -> None:
        """
        Delete a profile and its listings.

        Refused while any message or transaction names the profile, so the
        other party's history is never removed with it.
        """
        with self._session_scope() as db:
            profile = db.get(Profile, profile_id)
            if profile is None:
                raise NotFoundError("Profile", profile_id)
            self._gate.require(caller, Action.DELETE_PROFILE, profile)

            has_messages = db.query(Message.id).filter(
                or_(Message.sender_id == profile_id, Message.recipient_id == profile_id)
            ).first() is not None
            has_transactions = db.query(Transaction.id).filter(
                or_(Transaction.buyer_id == profile_id, Transaction.seller_id == profile_id)
            ).first() is not None
            if has_messages or has_transactions:
                raise ForbiddenError(
                    "PROFILE_HAS_HISTORY",
                    message=f"Profile {profile_id} has messages or transactions and cannot be deleted"
                )
            db.delete(profile)
        logger.info(f"Profile {profile_id} deleted")


# Singleton instance
profile_directory = ProfileDirectory()
