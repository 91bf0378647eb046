from django.contrib import admin

from .models import AuditLog


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
	list_display = ("created_at", "source", "event_type", "actor", "object_type", "object_id", "status_code")
	list_filter = ("source", "event_type", "object_type", "status_code")
	search_fields = ("actor__username", "object_id", "path")
	date_hierarchy = "created_at"

	def get_readonly_fields(self, request, obj=None):
		return [field.name for field in self.model._meta.fields]

	def has_add_permission(self, request):
		return False

	def has_change_permission(self, request, obj=None):
		return False

	def has_delete_permission(self, request, obj=None):
		return False
