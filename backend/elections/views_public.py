from __future__ import annotations

from django.db.models import Count
from django.utils import timezone
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from audit.services import log_event
from urna_backend.throttles import VoteSubmitRateThrottle

from .exceptions import AlreadyVoted, ElectionError, NotFound
from .models import Election
from .permissions import CanCastVote
from .serializers import (
    ElectionDetailSerializer,
    ElectionListSerializer,
    SubmitVoteInputSerializer,
    build_results_payload,
)
from .services import admit_vote, determine_winners, has_voted, results


ERROR_STATUS = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "not_open": status.HTTP_409_CONFLICT,
    "already_voted": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
}


def election_error_response(exc: ElectionError) -> Response:
    return Response(exc.as_payload(), status=ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST))


def _visible_election(request, election_id: int) -> Election | None:
    queryset = Election.objects.filter(id=election_id)
    if not getattr(request.user, "is_election_admin", False):
        queryset = queryset.filter(enabled=True)
    return queryset.first()


class ElectionListAPIView(APIView):
    permission_classes = [IsAuthenticated, CanCastVote]

    def get(self, request, *args, **kwargs):
        queryset = (
            Election.objects.filter(enabled=True)
            .annotate(candidates_count=Count("candidates", distinct=True))
            .order_by("-opens_at", "-id")
        )
        serializer = ElectionListSerializer(queryset, many=True, context={"now": timezone.now()})
        return Response({"results": serializer.data, "count": len(serializer.data)})


class ElectionDetailAPIView(APIView):
    permission_classes = [IsAuthenticated, CanCastVote]

    def get(self, request, election_id: int, *args, **kwargs):
        election = _visible_election(request, election_id)
        if election is None:
            return election_error_response(NotFound(NotFound.KIND_ELECTION))

        serializer = ElectionDetailSerializer(election, context={"now": timezone.now()})
        return Response(serializer.data)


class SubmitVoteAPIView(APIView):
    permission_classes = [IsAuthenticated, CanCastVote]
    throttle_classes = [VoteSubmitRateThrottle]

    def post(self, request, election_id: int, *args, **kwargs):
        serializer = SubmitVoteInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            receipt = admit_vote(
                voter_id=request.user.id,
                election_id=election_id,
                candidate_id=serializer.validated_data["candidate_id"],
            )
        except ElectionError as exc:
            response = election_error_response(exc)
            event_type = (
                "ELECTION_VOTE_SUBMIT_DUPLICATE" if isinstance(exc, AlreadyVoted) else "ELECTION_VOTE_REJECTED"
            )
            log_event(
                request,
                event_type=event_type,
                object_type="Election",
                object_id=election_id,
                status_code=response.status_code,
                metadata={"code": exc.code, **{k: v for k, v in exc.as_payload().items() if k in {"kind", "state"}}},
            )
            return response

        log_event(
            request,
            event_type="ELECTION_VOTE_SUBMIT",
            object_type="Election",
            object_id=receipt.election_id,
            status_code=status.HTTP_201_CREATED,
            metadata={"vote_id": receipt.vote_id, "receipt_code": receipt.receipt_code},
        )
        return Response(
            {
                "detail": "Voto registrado correctamente.",
                "vote_id": receipt.vote_id,
                "election_id": receipt.election_id,
                "candidate_id": receipt.candidate_id,
                "cast_at": receipt.cast_at,
                "receipt_code": receipt.receipt_code,
            },
            status=status.HTTP_201_CREATED,
        )


class CheckVoteAPIView(APIView):
    permission_classes = [IsAuthenticated, CanCastVote]

    def get(self, request, election_id: int, *args, **kwargs):
        election = _visible_election(request, election_id)
        if election is None:
            return election_error_response(NotFound(NotFound.KIND_ELECTION))

        vote_status = has_voted(voter_id=request.user.id, election_id=election.id)
        vote = None
        if vote_status.has_voted:
            vote = {
                "candidate_id": vote_status.candidate_id,
                "candidate_name": vote_status.candidate_name,
                "cast_at": vote_status.cast_at,
            }
        return Response({"has_voted": vote_status.has_voted, "vote": vote})


class ElectionResultsAPIView(APIView):
    permission_classes = [IsAuthenticated, CanCastVote]

    def get(self, request, election_id: int, *args, **kwargs):
        election = _visible_election(request, election_id)
        if election is None:
            return election_error_response(NotFound(NotFound.KIND_ELECTION))

        try:
            election_results = results(election.id)
        except ElectionError as exc:
            return election_error_response(exc)

        state = election.lifecycle_state()
        payload = build_results_payload(
            election=election,
            election_results=election_results,
            state=state,
            winners=determine_winners(election_results, state),
            vote_status=has_voted(voter_id=request.user.id, election_id=election.id),
        )
        return Response(payload)
