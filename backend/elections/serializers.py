from __future__ import annotations

from django.utils import timezone
from rest_framework import serializers

from .models import Candidate, Election


class CandidatePublicSerializer(serializers.ModelSerializer):
    class Meta:
        model = Candidate
        fields = ["id", "name", "party", "description", "photo"]


class ElectionListSerializer(serializers.ModelSerializer):
    state = serializers.SerializerMethodField()
    candidates_count = serializers.IntegerField(read_only=True)

    class Meta:
        model = Election
        fields = [
            "id",
            "title",
            "description",
            "opens_at",
            "closes_at",
            "enabled",
            "state",
            "candidates_count",
        ]

    def get_state(self, obj: Election) -> str:
        now = self.context.get("now") or timezone.now()
        return obj.lifecycle_state(now).value


class ElectionDetailSerializer(ElectionListSerializer):
    candidates = serializers.SerializerMethodField()

    class Meta(ElectionListSerializer.Meta):
        fields = [field for field in ElectionListSerializer.Meta.fields if field != "candidates_count"] + ["candidates"]

    def get_candidates(self, obj: Election):
        queryset = obj.candidates.all().order_by("name", "id")
        return CandidatePublicSerializer(queryset, many=True).data


class ElectionManageSerializer(ElectionListSerializer):
    votes_count = serializers.IntegerField(read_only=True)
    can_delete = serializers.SerializerMethodField()
    created_by_username = serializers.CharField(source="created_by.username", read_only=True)

    class Meta(ElectionListSerializer.Meta):
        fields = ElectionListSerializer.Meta.fields + [
            "votes_count",
            "can_delete",
            "created_by",
            "created_by_username",
            "created_at",
            "updated_at",
        ]

    def get_can_delete(self, obj: Election) -> bool:
        return int(getattr(obj, "votes_count", 0) or 0) == 0


class CandidateManageSerializer(serializers.ModelSerializer):
    votes_count = serializers.IntegerField(read_only=True)
    can_delete = serializers.SerializerMethodField()

    class Meta:
        model = Candidate
        fields = [
            "id",
            "election",
            "name",
            "party",
            "description",
            "photo",
            "vote_count",
            "votes_count",
            "can_delete",
            "created_at",
        ]

    def get_can_delete(self, obj: Candidate) -> bool:
        return int(getattr(obj, "votes_count", 0) or 0) == 0


class ElectionCreateSerializer(serializers.Serializer):
    title = serializers.CharField(min_length=3, max_length=200)
    description = serializers.CharField()
    opens_at = serializers.DateTimeField()
    closes_at = serializers.DateTimeField()
    enabled = serializers.BooleanField(required=False, default=True)

    def validate(self, attrs):
        opens_at = attrs.get("opens_at")
        closes_at = attrs.get("closes_at")
        if opens_at and closes_at and closes_at <= opens_at:
            raise serializers.ValidationError({"closes_at": "La fecha de cierre debe ser posterior a la fecha de apertura."})
        return attrs


class ElectionUpdateSerializer(ElectionCreateSerializer):
    def validate(self, attrs):
        instance: Election | None = self.instance
        opens_at = attrs.get("opens_at", instance.opens_at if instance else None)
        closes_at = attrs.get("closes_at", instance.closes_at if instance else None)
        if opens_at and closes_at and closes_at <= opens_at:
            raise serializers.ValidationError({"closes_at": "La fecha de cierre debe ser posterior a la fecha de apertura."})
        return attrs


class CandidateCreateSerializer(serializers.Serializer):
    name = serializers.CharField(min_length=2, max_length=160)
    party = serializers.CharField(max_length=160, required=False, allow_blank=True, default="")
    description = serializers.CharField(
        max_length=Candidate.DESCRIPTION_MAX_LENGTH,
        required=False,
        allow_blank=True,
        default="",
    )
    photo = serializers.URLField(max_length=500, required=False, allow_blank=True, default="")


class CandidateUpdateSerializer(CandidateCreateSerializer):
    pass


class SubmitVoteInputSerializer(serializers.Serializer):
    candidate_id = serializers.IntegerField(min_value=1)


class ReconcileInputSerializer(serializers.Serializer):
    dry_run = serializers.BooleanField(required=False, default=False)


def build_results_payload(*, election: Election, election_results, state, winners, vote_status) -> dict:
    winner_ids = {item.candidate_id for item in winners}
    total = election_results.total_votes

    candidates = []
    for position, item in enumerate(election_results.candidates, start=1):
        candidates.append(
            {
                "position": position,
                "candidate_id": item.candidate_id,
                "name": item.name,
                "party": item.party,
                "photo": item.photo,
                "votes": item.votes,
                "percentage": round((item.votes * 100.0) / total, 2) if total else 0.0,
                "is_winner": item.candidate_id in winner_ids,
            }
        )

    user_vote = None
    if vote_status.has_voted:
        user_vote = {
            "candidate_id": vote_status.candidate_id,
            "candidate_name": vote_status.candidate_name,
            "cast_at": vote_status.cast_at,
        }

    return {
        "election": {
            "id": election.id,
            "title": election.title,
            "opens_at": election.opens_at,
            "closes_at": election.closes_at,
            "state": state.value,
        },
        "total_votes": total,
        "candidates": candidates,
        "winners": [item.candidate_id for item in winners],
        "is_tie": len(winners) > 1,
        "has_voted": vote_status.has_voted,
        "user_vote": user_vote,
        "generated_at": election_results.generated_at,
    }
