"""
Organization directory: sending organizations, users, and the
membership records that link them.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Union

from docreq.errors import InvalidTransitionError, NotFoundError, ValidationError
from docreq.store.database import Database
from docreq.store.models import Organization, OrganizationMember, Request, User, UserRole

ORGANIZATION_FIELDS = frozenset({"name", "contact_person", "email", "phone", "is_active"})


class OrganizationDirectory:
    """
    Lookup and maintenance of organizations and their members.

    Usage:
        directory = OrganizationDirectory(db)
        org = directory.create_organization("Ministry of Works")
        user = directory.create_user("Jane Doe", role=UserRole.ORGANIZATION)
        directory.add_member(org.id, user.id)
        directory.members_of(org.id)  # -> [user.id]
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    # ---- Organizations ----

    def create_organization(self, name: str, **kwargs) -> Organization:
        with self.db.session() as session:
            org = Organization(name=name, **kwargs)
            session.add(org)
            session.flush()
            session.refresh(org)
            return org

    def get_organization(self, org_id: str) -> Organization:
        with self.db.session() as session:
            org = session.get(Organization, org_id)
            if org is None:
                raise NotFoundError("Organization", org_id)
            return org

    def find_organization(self, org_id: str) -> Optional[Organization]:
        with self.db.session() as session:
            return session.get(Organization, org_id)

    def list_organizations(self, active_only: bool = True) -> list[Organization]:
        with self.db.session() as session:
            q = session.query(Organization)
            if active_only:
                q = q.filter(Organization.is_active.is_(True))
            return q.order_by(Organization.name).all()

    def update_organization(self, org_id: str, values: dict[str, Any]) -> Organization:
        unknown = sorted(set(values) - ORGANIZATION_FIELDS)
        if unknown:
            raise ValidationError(f"Organization fields cannot be set: {unknown}", unknown)
        if "name" in values and not (values["name"] or "").strip():
            raise ValidationError("Organization name cannot be empty", ["name"])
        with self.db.session() as session:
            org = session.get(Organization, org_id)
            if org is None:
                raise NotFoundError("Organization", org_id)
            for key, val in values.items():
                setattr(org, key, val.strip() if isinstance(val, str) else val)
            session.flush()
            session.refresh(org)
            return org

    def delete_organization(self, org_id: str) -> None:
        """Delete an organization and its memberships.

        Refused while requests still name it as their sender.
        """
        with self.db.session() as session:
            org = session.get(Organization, org_id)
            if org is None:
                raise NotFoundError("Organization", org_id)
            in_use = session.query(Request).filter(Request.sender == org_id).count()
            if in_use:
                raise InvalidTransitionError(
                    f"Organization {org_id} is the sender of {in_use} request(s)"
                )
            session.query(OrganizationMember).filter(
                OrganizationMember.organization_id == org_id
            ).delete(synchronize_session=False)
            session.delete(org)

    # ---- Users ----

    def create_user(
        self,
        full_name: str,
        role: UserRole = UserRole.USER,
        user_id: Optional[str] = None,
        **kwargs,
    ) -> User:
        with self.db.session() as session:
            user = User(full_name=full_name, role=role, **kwargs)
            if user_id:
                user.id = user_id
            session.add(user)
            session.flush()
            session.refresh(user)
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self.db.session() as session:
            return session.get(User, user_id)

    def is_admin(self, user_id: str) -> bool:
        user = self.get_user(user_id)
        return user is not None and user.is_active and user.is_admin

    def users_with_roles(self, roles: Iterable[Union[UserRole, str]]) -> list[str]:
        """Active user ids holding any of ``roles``."""
        roles = list(roles)
        try:
            wanted = [r if isinstance(r, UserRole) else UserRole(str(r).strip().lower()) for r in roles]
        except ValueError:
            raise ValidationError(f"Unknown role in {roles}", ["role"]) from None
        if not wanted:
            return []
        with self.db.session() as session:
            rows = (
                session.query(User.id)
                .filter(User.role.in_(wanted), User.is_active.is_(True))
                .order_by(User.created_at, User.id)
                .all()
            )
            return [r.id for r in rows]

    # ---- Membership ----

    def add_member(self, org_id: str, user_id: str, is_primary: bool = False) -> OrganizationMember:
        """Link a user to an organization. Re-adding an existing member is a no-op."""
        with self.db.session() as session:
            existing = (
                session.query(OrganizationMember)
                .filter(
                    OrganizationMember.organization_id == org_id,
                    OrganizationMember.user_id == user_id,
                )
                .first()
            )
            if existing is not None:
                return existing
            if is_primary:
                # Only one primary organization per user
                session.query(OrganizationMember).filter(
                    OrganizationMember.user_id == user_id
                ).update({OrganizationMember.is_primary: False})
            member = OrganizationMember(organization_id=org_id, user_id=user_id, is_primary=is_primary)
            session.add(member)
            session.flush()
            session.refresh(member)
            return member

    def set_primary(self, user_id: str, org_id: str) -> OrganizationMember:
        """Make ``org_id`` the user's primary organization; the user must already be a member."""
        with self.db.session() as session:
            member = (
                session.query(OrganizationMember)
                .filter(
                    OrganizationMember.organization_id == org_id,
                    OrganizationMember.user_id == user_id,
                )
                .first()
            )
            if member is None:
                raise NotFoundError("Membership", f"{user_id}@{org_id}")
            session.query(OrganizationMember).filter(
                OrganizationMember.user_id == user_id,
                OrganizationMember.id != member.id,
            ).update({OrganizationMember.is_primary: False}, synchronize_session=False)
            member.is_primary = True
            session.flush()
            session.refresh(member)
            return member

    def primary_organization(self, user_id: str) -> Optional[str]:
        with self.db.session() as session:
            row = (
                session.query(OrganizationMember.organization_id)
                .filter(
                    OrganizationMember.user_id == user_id,
                    OrganizationMember.is_primary.is_(True),
                )
                .first()
            )
            return row.organization_id if row else None

    def remove_member(self, org_id: str, user_id: str) -> bool:
        with self.db.session() as session:
            deleted = (
                session.query(OrganizationMember)
                .filter(
                    OrganizationMember.organization_id == org_id,
                    OrganizationMember.user_id == user_id,
                )
                .delete()
            )
            return deleted > 0

    def members_of(self, org_id: str) -> list[str]:
        """Active member user ids of an organization, in the order they joined."""
        with self.db.session() as session:
            rows = (
                session.query(OrganizationMember.user_id)
                .join(User, User.id == OrganizationMember.user_id)
                .filter(
                    OrganizationMember.organization_id == org_id,
                    User.is_active.is_(True),
                )
                .order_by(OrganizationMember.id)
                .all()
            )
            return [r.user_id for r in rows]

    def organizations_of(self, user_id: str) -> list[str]:
        with self.db.session() as session:
            rows = (
                session.query(OrganizationMember.organization_id)
                .filter(OrganizationMember.user_id == user_id)
                .order_by(OrganizationMember.is_primary.desc(), OrganizationMember.id)
                .all()
            )
            return [r.organization_id for r in rows]
