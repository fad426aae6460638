import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='LogEntry',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, help_text='Record identifier, generated by the agent at capture time', primary_key=True, serialize=False)),
                ('latitude', models.FloatField(help_text='Latitude in decimal degrees (-90 to +90)')),
                ('longitude', models.FloatField(help_text='Longitude in decimal degrees (-180 to +180)')),
                ('device_id', models.CharField(db_index=True, help_text='Per-session identifier of the submitting agent', max_length=100)),
                ('ip_address', models.CharField(default='Unknown', help_text="Public IP the agent reported, or 'Unknown'", max_length=64)),
                ('image_data', models.TextField(blank=True, help_text='Camera capture as a base64 data URL', null=True)),
                ('device_info', models.JSONField(blank=True, help_text='Device fingerprint captured with this sample', null=True)),
                ('created_at', models.DateTimeField(db_index=True, help_text='When the agent created this record')),
            ],
            options={
                'verbose_name': 'Log Entry',
                'verbose_name_plural': 'Log Entries',
                'db_table': 'user_locations',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['device_id', '-created_at'], name='user_locati_device__6f1c2a_idx'), models.Index(fields=['-created_at'], name='user_locati_created_9b3e4d_idx')],
            },
        ),
    ]
