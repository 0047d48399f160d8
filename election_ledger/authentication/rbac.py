# election_ledger/authentication/rbac.py

from enum import Enum
from functools import wraps
from flask import abort
from flask_jwt_extended import get_jwt, verify_jwt_in_request

from election_ledger.database.models import Role

# Role-Based Access Control for ledger operations and API views


class Permission(Enum):
    VOTE = "vote"
    VIEW_RESULTS = "view_results"
    VIEW_OWN_STATUS = "view_own_status"
    MANAGE_ELECTIONS = "manage_elections"
    VIEW_VOTER_LIST = "view_voter_list"
    VIEW_VOTES = "view_votes"
    EXPORT_VOTES = "export_votes"
    VIEW_AUDIT_LOGS = "view_audit_logs"
    RESPOND_SURVEYS = "respond_surveys"


# Role -> Permissions mapping
ROLE_PERMISSIONS = {
    Role.VOTER: [
        Permission.VOTE,
        Permission.VIEW_RESULTS,
        Permission.VIEW_OWN_STATUS,
        Permission.RESPOND_SURVEYS,
    ],
    Role.ADMIN: [
        Permission.VOTE,
        Permission.VIEW_RESULTS,
        Permission.VIEW_OWN_STATUS,
        Permission.MANAGE_ELECTIONS,
        Permission.VIEW_VOTER_LIST,
        Permission.VIEW_VOTES,
        Permission.EXPORT_VOTES,
        Permission.VIEW_AUDIT_LOGS,
        Permission.RESPOND_SURVEYS,
    ],
}


class RBACService:
    def has_permission(self, user_role, permission):
        if isinstance(user_role, str):
            try:
                user_role = Role(user_role.lower().strip())
            except ValueError:
                return False
        if isinstance(permission, str):
            permission = Permission(permission)
        return permission in ROLE_PERMISSIONS.get(user_role, [])

    def get_permissions(self, user_role):
        if isinstance(user_role, str):
            user_role = Role(user_role)
        return ROLE_PERMISSIONS.get(user_role, [])


rbac_service = RBACService()


# Decorator for required permission, read from the role claim of the JWT
def require_permission(permission):
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            role = get_jwt().get('role')
            if role is None:
                abort(401)
            if not rbac_service.has_permission(role, permission):
                abort(403)
            return func(*args, **kwargs)
        return wrapper
    return decorator
