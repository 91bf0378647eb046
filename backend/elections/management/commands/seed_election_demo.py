from __future__ import annotations

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.utils import timezone

from elections.services import create_candidate, create_election


DEFAULT_CANDIDATES = [
    {
        "name": "Valentina Rojas",
        "party": "Movimiento Cívico",
        "description": "Mediación comunitaria y espacios de escucha.",
    },
    {
        "name": "Julián Herrera",
        "party": "Alianza Verde Local",
        "description": "Presupuestos participativos por barrio.",
    },
    {
        "name": "María Camila Pérez",
        "party": "",
        "description": "Reportes trimestrales claros para la ciudadanía.",
    },
    {
        "name": "Daniel Quintero",
        "party": "Partido Progresista",
        "description": "Mesa de veeduría con representantes por sector.",
    },
]


class Command(BaseCommand):
    help = "Crea una elección demo abierta con candidaturas de ejemplo."

    def add_arguments(self, parser):
        parser.add_argument(
            "--title",
            type=str,
            default=f"Elección Demo {timezone.localdate().isoformat()}",
            help="Título de la elección.",
        )
        parser.add_argument(
            "--hours",
            type=int,
            default=8,
            help="Horas que permanecerá abierta la elección.",
        )
        parser.add_argument(
            "--candidates",
            type=int,
            default=len(DEFAULT_CANDIDATES),
            help=f"Cantidad de candidaturas a crear (máximo {len(DEFAULT_CANDIDATES)}).",
        )
        parser.add_argument(
            "--owner",
            type=str,
            default="",
            help="Username del administrador creador (por defecto, el primer superadministrador).",
        )

    def _resolve_owner(self, username: str):
        User = get_user_model()
        if username:
            owner = User.objects.filter(username=username).first()
            if owner is None:
                raise CommandError(f"No existe el usuario '{username}'.")
            return owner

        owner = User.objects.filter(role__in=User.ADMIN_ROLES).order_by("id").first()
        if owner is None:
            raise CommandError("No hay administradores registrados. Usa --owner o crea un superadministrador.")
        return owner

    @transaction.atomic
    def handle(self, *args, **options):
        title = str(options["title"]).strip()
        hours = max(1, int(options["hours"]))
        candidate_count = max(1, min(int(options["candidates"]), len(DEFAULT_CANDIDATES)))
        owner = self._resolve_owner(str(options["owner"] or "").strip())

        now = timezone.now()
        election = create_election(
            created_by=owner,
            title=title,
            description="Elección de demostración generada automáticamente.",
            opens_at=now,
            closes_at=now + timezone.timedelta(hours=hours),
            enabled=True,
        )

        for candidate_data in DEFAULT_CANDIDATES[:candidate_count]:
            create_candidate(election_id=election.id, **candidate_data)

        self.stdout.write(self.style.SUCCESS(f"Elección creada: id={election.id}, título='{election.title}'"))
        self.stdout.write(self.style.SUCCESS(f"Candidaturas creadas: {candidate_count}"))
        self.stdout.write(f"Cierra: {election.closes_at.isoformat()}")
