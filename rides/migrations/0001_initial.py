import django.core.validators
import django.utils.timezone
from django.db import migrations, models

import rides.models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
    ]

    operations = [
        migrations.CreateModel(
            name='RideRecord',
            fields=[
                ('id', models.CharField(default=rides.models.generate_ride_id, editable=False, max_length=32, primary_key=True, serialize=False)),
                ('session_key', models.CharField(db_index=True, help_text='Booking session that owns this ride', max_length=64)),
                ('pickup_name', models.CharField(max_length=255)),
                ('pickup_longitude', models.FloatField(blank=True, null=True)),
                ('pickup_latitude', models.FloatField(blank=True, null=True)),
                ('destination_name', models.CharField(max_length=255)),
                ('destination_longitude', models.FloatField(blank=True, null=True)),
                ('destination_latitude', models.FloatField(blank=True, null=True)),
                ('ride_class', models.CharField(choices=[('economy', 'Economy'), ('premium', 'Premium'), ('economy_shared', 'Economy Shared'), ('premium_shared', 'Premium Shared')], max_length=20)),
                ('distance_km', models.PositiveIntegerField()),
                ('cost', models.PositiveIntegerField(help_text='Fare fixed at booking time')),
                ('route_geometry', models.TextField(blank=True, default='', help_text='Encoded polyline of the quoted route')),
                ('status', models.CharField(choices=[('ongoing', 'Ongoing'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='ongoing', max_length=20)),
                ('driver_name', models.CharField(blank=True, default='', max_length=100)),
                ('driver_rating', models.FloatField(blank=True, null=True)),
                ('driver_vehicle', models.CharField(blank=True, default='', max_length=100)),
                ('driver_plate', models.CharField(blank=True, default='', max_length=32)),
                ('feedback', models.TextField(blank=True, default='')),
                ('driver_rating_given', models.PositiveSmallIntegerField(blank=True, help_text="Rider's rating of the driver (1-5)", null=True, validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(5)])),
                ('payment_reference', models.CharField(blank=True, default='', max_length=64)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'verbose_name': 'Ride',
                'verbose_name_plural': 'Rides',
                'ordering': ['created_at', 'id'],
            },
        ),
        migrations.CreateModel(
            name='SharedRide',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('session_key', models.CharField(db_index=True, max_length=64)),
                ('host_name', models.CharField(default='You', max_length=100)),
                ('pickup', models.CharField(max_length=255)),
                ('destination', models.CharField(max_length=255)),
                ('departure', models.DateTimeField()),
                ('seats', models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(4)])),
                ('ride_class', models.CharField(choices=[('economy', 'Economy'), ('premium', 'Premium'), ('economy_shared', 'Economy Shared'), ('premium_shared', 'Premium Shared')], max_length=20)),
                ('distance_km', models.PositiveIntegerField()),
                ('price_per_person', models.PositiveIntegerField()),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'Shared ride',
                'verbose_name_plural': 'Shared rides',
                'ordering': ['-created_at'],
            },
        ),
    ]
