from __future__ import annotations

import csv
from io import BytesIO

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import Count
from django.http import HttpResponse
from django.utils import timezone
from openpyxl import Workbook
from rest_framework import serializers, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from audit.services import log_event

from .exceptions import ElectionError, NotFound
from .filters import ElectionFilter
from .models import Candidate, Election
from .permissions import CanManageElections
from .serializers import (
    CandidateCreateSerializer,
    CandidateManageSerializer,
    CandidateUpdateSerializer,
    ElectionCreateSerializer,
    ElectionManageSerializer,
    ElectionUpdateSerializer,
    ReconcileInputSerializer,
)
from .services import (
    create_candidate,
    create_election,
    delete_candidate,
    delete_election,
    determine_winners,
    reconcile_tally,
    results,
    update_candidate,
    update_election,
)
from .views_public import election_error_response


def _as_drf_validation_error(exc: DjangoValidationError) -> serializers.ValidationError:
    if hasattr(exc, "error_dict"):
        return serializers.ValidationError(exc.message_dict)
    return serializers.ValidationError({"non_field_errors": exc.messages})


def _manage_election_queryset():
    return Election.objects.select_related("created_by").annotate(
        votes_count=Count("votes", distinct=True),
        candidates_count=Count("candidates", distinct=True),
    )


def _manage_candidate_queryset():
    return Candidate.objects.annotate(votes_count=Count("votes", distinct=True))


class ElectionManageListCreateAPIView(APIView):
    permission_classes = [IsAuthenticated, CanManageElections]

    def get(self, request, *args, **kwargs):
        filterset = ElectionFilter(request.query_params, queryset=_manage_election_queryset())
        if not filterset.is_valid():
            return Response(filterset.errors, status=status.HTTP_400_BAD_REQUEST)

        queryset = filterset.qs.order_by("-opens_at", "-id")
        serializer = ElectionManageSerializer(queryset, many=True, context={"now": timezone.now()})
        return Response({"results": serializer.data, "count": len(serializer.data)})

    def post(self, request, *args, **kwargs):
        serializer = ElectionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            election = create_election(created_by=request.user, **serializer.validated_data)
        except DjangoValidationError as exc:
            raise _as_drf_validation_error(exc)

        log_event(
            request,
            event_type="ELECTION_CREATE",
            object_type="Election",
            object_id=election.id,
            status_code=status.HTTP_201_CREATED,
            metadata={"title": election.title, "enabled": election.enabled},
        )
        instance = _manage_election_queryset().get(id=election.id)
        return Response(ElectionManageSerializer(instance).data, status=status.HTTP_201_CREATED)


class ElectionManageDetailAPIView(APIView):
    permission_classes = [IsAuthenticated, CanManageElections]

    def get(self, request, election_id: int, *args, **kwargs):
        instance = _manage_election_queryset().filter(id=election_id).first()
        if instance is None:
            return election_error_response(NotFound(NotFound.KIND_ELECTION))
        return Response(ElectionManageSerializer(instance).data)

    def patch(self, request, election_id: int, *args, **kwargs):
        election = Election.objects.filter(id=election_id).first()
        if election is None:
            return election_error_response(NotFound(NotFound.KIND_ELECTION))

        serializer = ElectionUpdateSerializer(instance=election, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        try:
            update_election(election.id, **serializer.validated_data)
        except ElectionError as exc:
            response = election_error_response(exc)
            log_event(
                request,
                event_type="ELECTION_UPDATE_REJECTED",
                object_type="Election",
                object_id=election.id,
                status_code=response.status_code,
                metadata={"code": exc.code, "fields": sorted(serializer.validated_data)},
            )
            return response
        except DjangoValidationError as exc:
            raise _as_drf_validation_error(exc)

        log_event(
            request,
            event_type="ELECTION_UPDATE",
            object_type="Election",
            object_id=election.id,
            status_code=status.HTTP_200_OK,
            metadata={"fields": sorted(serializer.validated_data)},
        )
        refreshed = _manage_election_queryset().get(id=election.id)
        return Response(ElectionManageSerializer(refreshed).data)

    def delete(self, request, election_id: int, *args, **kwargs):
        try:
            delete_election(election_id)
        except ElectionError as exc:
            response = election_error_response(exc)
            log_event(
                request,
                event_type="ELECTION_DELETE_REJECTED",
                object_type="Election",
                object_id=election_id,
                status_code=response.status_code,
                metadata={"code": exc.code},
            )
            return response

        log_event(
            request,
            event_type="ELECTION_DELETE",
            object_type="Election",
            object_id=election_id,
            status_code=status.HTTP_204_NO_CONTENT,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


class CandidateManageListCreateAPIView(APIView):
    permission_classes = [IsAuthenticated, CanManageElections]

    def get(self, request, election_id: int, *args, **kwargs):
        if not Election.objects.filter(id=election_id).exists():
            return election_error_response(NotFound(NotFound.KIND_ELECTION))

        queryset = _manage_candidate_queryset().filter(election_id=election_id).order_by("created_at", "id")
        serializer = CandidateManageSerializer(queryset, many=True)
        return Response({"results": serializer.data, "count": len(serializer.data)})

    def post(self, request, election_id: int, *args, **kwargs):
        serializer = CandidateCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            candidate = create_candidate(election_id=election_id, **serializer.validated_data)
        except ElectionError as exc:
            return election_error_response(exc)
        except DjangoValidationError as exc:
            raise _as_drf_validation_error(exc)

        log_event(
            request,
            event_type="ELECTION_CANDIDATE_CREATE",
            object_type="Candidate",
            object_id=candidate.id,
            status_code=status.HTTP_201_CREATED,
            metadata={"election_id": candidate.election_id},
        )
        instance = _manage_candidate_queryset().get(id=candidate.id)
        return Response(CandidateManageSerializer(instance).data, status=status.HTTP_201_CREATED)


class CandidateManageDetailAPIView(APIView):
    permission_classes = [IsAuthenticated, CanManageElections]

    def patch(self, request, candidate_id: int, *args, **kwargs):
        serializer = CandidateUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        try:
            candidate = update_candidate(candidate_id, **serializer.validated_data)
        except ElectionError as exc:
            return election_error_response(exc)
        except DjangoValidationError as exc:
            raise _as_drf_validation_error(exc)

        log_event(
            request,
            event_type="ELECTION_CANDIDATE_UPDATE",
            object_type="Candidate",
            object_id=candidate.id,
            status_code=status.HTTP_200_OK,
            metadata={"election_id": candidate.election_id, "fields": sorted(serializer.validated_data)},
        )
        instance = _manage_candidate_queryset().get(id=candidate.id)
        return Response(CandidateManageSerializer(instance).data)

    def delete(self, request, candidate_id: int, *args, **kwargs):
        try:
            delete_candidate(candidate_id)
        except ElectionError as exc:
            response = election_error_response(exc)
            log_event(
                request,
                event_type="ELECTION_CANDIDATE_DELETE_REJECTED",
                object_type="Candidate",
                object_id=candidate_id,
                status_code=response.status_code,
                metadata={"code": exc.code},
            )
            return response

        log_event(
            request,
            event_type="ELECTION_CANDIDATE_DELETE",
            object_type="Candidate",
            object_id=candidate_id,
            status_code=status.HTTP_204_NO_CONTENT,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


class ElectionReconcileAPIView(APIView):
    permission_classes = [IsAuthenticated, CanManageElections]

    def post(self, request, election_id: int, *args, **kwargs):
        serializer = ReconcileInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            report = reconcile_tally(election_id, dry_run=serializer.validated_data["dry_run"])
        except ElectionError as exc:
            return election_error_response(exc)

        payload = report.as_dict()
        log_event(
            request,
            event_type="ELECTION_TALLY_RECONCILED",
            object_type="Election",
            object_id=election_id,
            status_code=status.HTTP_200_OK,
            metadata={**payload, "trigger": "api"},
        )
        return Response(payload)


def _export_rows(election: Election):
    election_results = results(election.id)
    state = election.lifecycle_state()
    winner_ids = {item.candidate_id for item in determine_winners(election_results, state)}
    rows = [
        [position, item.name, item.party, item.votes, "SI" if item.candidate_id in winner_ids else ""]
        for position, item in enumerate(election_results.candidates, start=1)
    ]
    return election_results, state, rows


def _safe_filename(election: Election) -> str:
    return election.title.replace('"', "").replace(",", "").replace(" ", "_")


class ElectionResultsExportCsvAPIView(APIView):
    permission_classes = [IsAuthenticated, CanManageElections]

    def get(self, request, election_id: int, *args, **kwargs):
        election = Election.objects.filter(id=election_id).first()
        if election is None:
            return election_error_response(NotFound(NotFound.KIND_ELECTION))

        election_results, state, rows = _export_rows(election)

        response = HttpResponse(content_type="text/csv; charset=utf-8")
        response["Content-Disposition"] = f'attachment; filename="resultados_{_safe_filename(election)}_{election.id}.csv"'

        writer = csv.writer(response)
        writer.writerow(["eleccion_id", election.id])
        writer.writerow(["eleccion", election.title])
        writer.writerow(["estado", state.value])
        writer.writerow(["generado_en", election_results.generated_at.isoformat()])
        writer.writerow(["total_votos", election_results.total_votes])
        writer.writerow([])
        writer.writerow(["posicion", "candidato", "partido", "votos", "ganador"])
        for row in rows:
            writer.writerow(row)

        log_event(
            request,
            event_type="ELECTION_RESULTS_EXPORT_CSV",
            object_type="Election",
            object_id=election.id,
            status_code=status.HTTP_200_OK,
            metadata={"total_votes": election_results.total_votes},
        )
        return response


class ElectionResultsExportXlsxAPIView(APIView):
    permission_classes = [IsAuthenticated, CanManageElections]

    def get(self, request, election_id: int, *args, **kwargs):
        election = Election.objects.filter(id=election_id).first()
        if election is None:
            return election_error_response(NotFound(NotFound.KIND_ELECTION))

        election_results, state, rows = _export_rows(election)

        workbook = Workbook()
        sheet = workbook.active
        sheet.title = "Resultados"

        sheet.append(["Elección ID", election.id])
        sheet.append(["Elección", election.title])
        sheet.append(["Estado", state.label])
        sheet.append(["Generado en", election_results.generated_at.isoformat()])
        sheet.append(["Total votos", election_results.total_votes])
        sheet.append([])
        sheet.append(["Posición", "Candidato", "Partido", "Votos", "Ganador"])
        for row in rows:
            sheet.append(row)

        output = BytesIO()
        workbook.save(output)
        output.seek(0)

        response = HttpResponse(
            output.getvalue(),
            content_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
        response["Content-Disposition"] = f'attachment; filename="resultados_{_safe_filename(election)}_{election.id}.xlsx"'

        log_event(
            request,
            event_type="ELECTION_RESULTS_EXPORT_XLSX",
            object_type="Election",
            object_id=election.id,
            status_code=status.HTTP_200_OK,
            metadata={"total_votes": election_results.total_votes},
        )
        return response
