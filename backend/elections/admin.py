from django.contrib import admin

from .models import Candidate, Election, Vote


class CandidateInline(admin.TabularInline):
    model = Candidate
    extra = 0
    fields = ("name", "party", "photo", "vote_count")
    readonly_fields = ("vote_count",)


@admin.register(Election)
class ElectionAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "enabled", "opens_at", "closes_at", "created_by", "created_at")
    list_filter = ("enabled",)
    search_fields = ("title",)
    inlines = [CandidateInline]

    def get_readonly_fields(self, request, obj=None):
        if obj is not None and obj.has_votes():
            return ("opens_at", "closes_at")
        return ()

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.has_votes():
            return False
        return super().has_delete_permission(request, obj)


@admin.register(Candidate)
class CandidateAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "party", "election", "vote_count", "created_at")
    list_filter = ("election",)
    search_fields = ("name", "party")

    def get_readonly_fields(self, request, obj=None):
        if obj is not None:
            return ("election", "vote_count")
        return ("vote_count",)


@admin.register(Vote)
class VoteAdmin(admin.ModelAdmin):
    list_display = ("id", "election", "voter", "cast_at")
    list_filter = ("election",)
    search_fields = ("voter__username",)
    date_hierarchy = "cast_at"

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
