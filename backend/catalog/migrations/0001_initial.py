from decimal import Decimal

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Material',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(db_index=True, max_length=255)),
                ('category', models.CharField(choices=[('PC Portable', 'PC Portable'), ('Fixe', 'Fixe'), ('Écran', 'Écran'), ('Clavier', 'Clavier'), ('Souris', 'Souris'), ('Casque', 'Casque'), ('Webcam', 'Webcam'), ('Autre', 'Autre')], default='Autre', max_length=50)),
                ('description', models.TextField(blank=True)),
                ('manufacturer', models.CharField(blank=True, max_length=200)),
                ('model', models.CharField(blank=True, max_length=200)),
                ('stock', models.PositiveIntegerField(default=0)),
                ('min_stock', models.PositiveIntegerField(default=0)),
                ('unit_price', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=12)),
                ('image_url', models.URLField(blank=True, max_length=500)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'db_table': 'materials',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='Serial',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('serial_number', models.CharField(db_index=True, max_length=255, unique=True)),
                ('status', models.CharField(choices=[('En stock', 'En stock'), ('Attribué', 'Attribué'), ('En réparation', 'En réparation'), ('Retiré', 'Retiré'), ('Télétravail', 'Télétravail')], db_index=True, default='En stock', max_length=20)),
                ('purchase_date', models.DateField(blank=True, null=True)),
                ('warranty_end', models.DateField(blank=True, null=True)),
                ('renewal_date', models.DateField(blank=True, null=True)),
                ('location', models.CharField(blank=True, max_length=200)),
                ('notes', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('material', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='serials', to='catalog.material')),
            ],
            options={
                'db_table': 'serials',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['material', 'status'], name='idx_serial_material_status'),
                    models.Index(fields=['warranty_end'], name='idx_serial_warranty_end'),
                ],
            },
        ),
    ]
