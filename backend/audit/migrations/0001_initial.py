from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='AuditLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('source', models.CharField(choices=[('REQUEST', 'Petición HTTP'), ('SYSTEM', 'Proceso del sistema')], default='REQUEST', max_length=10)),
                ('event_type', models.CharField(max_length=80)),
                ('object_type', models.CharField(blank=True, default='', max_length=80)),
                ('object_id', models.CharField(blank=True, default='', max_length=80)),
                ('path', models.CharField(blank=True, default='', max_length=300)),
                ('method', models.CharField(blank=True, default='', max_length=10)),
                ('status_code', models.PositiveSmallIntegerField(blank=True, null=True)),
                ('ip_address', models.CharField(blank=True, default='', max_length=64)),
                ('user_agent', models.TextField(blank=True, default='')),
                ('metadata', models.JSONField(blank=True, default=dict)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('actor', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='audit_logs', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'indexes': [
                    models.Index(fields=['event_type', 'created_at'], name='audit_audit_event_t_7c1f0a_idx'),
                    models.Index(fields=['object_type', 'object_id', 'created_at'], name='audit_audit_object__3b9e2d_idx'),
                    models.Index(fields=['actor', 'created_at'], name='audit_audit_actor_i_5d8a4e_idx'),
                    models.Index(fields=['source', 'created_at'], name='audit_audit_source_2e6b91_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('source', 'REQUEST'), ('actor__isnull', True), _connector='OR'), name='audit_system_events_have_no_actor'),
                ],
            },
        ),
    ]
