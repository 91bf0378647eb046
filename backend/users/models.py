from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    ROLE_SUPERADMIN = "SUPERADMIN"
    ROLE_ADMIN = "ADMIN"
    ROLE_VOTER = "VOTER"

    ROLES = (
        (ROLE_SUPERADMIN, "Superadministrador"),
        (ROLE_ADMIN, "Administrador electoral"),
        (ROLE_VOTER, "Votante"),
    )

    ADMIN_ROLES = {ROLE_SUPERADMIN, ROLE_ADMIN}

    role = models.CharField(max_length=20, choices=ROLES, default=ROLE_VOTER)
    email = models.EmailField(unique=True, blank=True, null=True, verbose_name="Correo electrónico")

    REQUIRED_FIELDS = ["email", "role"]

    def save(self, *args, **kwargs):
        # Blank emails are NULL; uniqueness applies to real addresses only.
        self.email = (self.email or "").strip() or None
        return super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.username} ({self.get_role_display()})"

    @property
    def is_election_admin(self) -> bool:
        return self.role in self.ADMIN_ROLES
