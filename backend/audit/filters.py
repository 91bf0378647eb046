import django_filters

from .models import AuditLog


class AuditLogFilter(django_filters.FilterSet):
	event_type = django_filters.CharFilter(field_name="event_type", lookup_expr="iexact")
	event_prefix = django_filters.CharFilter(field_name="event_type", lookup_expr="istartswith")
	created_after = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
	created_before = django_filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lte")

	class Meta:
		model = AuditLog
		fields = ["source", "object_type", "object_id", "actor", "status_code"]
