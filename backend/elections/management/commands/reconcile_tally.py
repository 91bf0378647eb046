from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from audit.services import log_system_event
from elections.exceptions import NotFound
from elections.models import Election
from elections.services import reconcile_tally


class Command(BaseCommand):
    help = "Recalcula los contadores de votos de las candidaturas a partir del registro de votos."

    def add_arguments(self, parser):
        target = parser.add_mutually_exclusive_group(required=True)
        target.add_argument("--election", type=int, help="ID de la elección a conciliar.")
        target.add_argument("--all", action="store_true", help="Concilia todas las elecciones.")
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Muestra las diferencias sin escribir cambios.",
        )

    def handle(self, *args, **options):
        dry_run = bool(options["dry_run"])
        if options["all"]:
            election_ids = list(Election.objects.order_by("id").values_list("id", flat=True))
        else:
            election_ids = [int(options["election"])]

        total_corrections = 0
        for election_id in election_ids:
            try:
                report = reconcile_tally(election_id, dry_run=dry_run)
            except NotFound as exc:
                raise CommandError(f"{exc.detail} (id={election_id})")

            total_corrections += len(report.corrections)
            for correction in report.corrections:
                self.stdout.write(
                    f"- elección {election_id} candidatura {correction.candidate_id}: "
                    f"{correction.previous} -> {correction.derived}"
                )

            if report.changed and not dry_run:
                log_system_event(
                    event_type="ELECTION_TALLY_RECONCILED",
                    object_type="Election",
                    object_id=election_id,
                    metadata={**report.as_dict(), "trigger": "command"},
                )

        prefix = "[dry-run] " if dry_run else ""
        self.stdout.write(
            self.style.SUCCESS(
                f"{prefix}Elecciones revisadas: {len(election_ids)} | Contadores corregidos: {total_corrections}"
            )
        )
