from __future__ import annotations

from rest_framework.permissions import BasePermission

from users.models import User


class CanCastVote(BasePermission):
    message = "No tienes permisos para votar."

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated or not user.is_active:
            return False

        return getattr(user, "role", None) in {
            User.ROLE_SUPERADMIN,
            User.ROLE_ADMIN,
            User.ROLE_VOTER,
        }


class CanManageElections(BasePermission):
    message = "No tienes permisos para gestionar elecciones."

    def has_permission(self, request, view):
        user = getattr(request, "user", None)
        if not user or not user.is_authenticated:
            return False

        return getattr(user, "role", None) in {
            User.ROLE_SUPERADMIN,
            User.ROLE_ADMIN,
        }
