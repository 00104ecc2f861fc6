import django.db.models.deletion
import django.utils.timezone
import simple_history.models
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='StockItem',
            fields=[
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.CharField(help_text='Item identifier', max_length=64, primary_key=True, serialize=False)),
                ('name', models.CharField(max_length=255)),
                ('category', models.CharField(blank=True, db_index=True, help_text='Category used for filtering and turnover roll-ups', max_length=100)),
                ('unit', models.CharField(blank=True, help_text='Unit of measure (kg, ea, L, ...)', max_length=20)),
                ('safety_stock', models.DecimalField(decimal_places=4, default=0, help_text='Minimum buffer quantity', max_digits=14)),
                ('reorder_point', models.DecimalField(decimal_places=4, default=0, help_text='Quantity at which a reorder is raised', max_digits=14)),
                ('max_stock', models.DecimalField(decimal_places=4, default=0, help_text='Maximum quantity to hold', max_digits=14)),
                ('lead_time_days', models.PositiveIntegerField(default=0, help_text='Days between placing and receiving a reorder')),
                ('average_daily_cost', models.DecimalField(decimal_places=6, default=0, help_text='Average daily outbound quantity over the trailing 30 days', max_digits=18)),
                ('total_quantity', models.DecimalField(decimal_places=4, default=0, max_digits=14)),
                ('total_value', models.DecimalField(decimal_places=4, default=0, max_digits=18)),
                ('weighted_average_cost', models.DecimalField(decimal_places=6, default=0, max_digits=18)),
            ],
            options={
                'verbose_name': 'Stock Item',
                'verbose_name_plural': 'Stock Items',
                'ordering': ['name'],
                'indexes': [models.Index(fields=['category', 'name'], name='inv_item_category_idx')],
            },
        ),
        migrations.CreateModel(
            name='HistoricalStockItem',
            fields=[
                ('created_at', models.DateTimeField(blank=True, editable=False)),
                ('updated_at', models.DateTimeField(blank=True, editable=False)),
                ('id', models.CharField(db_index=True, help_text='Item identifier', max_length=64)),
                ('name', models.CharField(max_length=255)),
                ('category', models.CharField(blank=True, db_index=True, help_text='Category used for filtering and turnover roll-ups', max_length=100)),
                ('unit', models.CharField(blank=True, help_text='Unit of measure (kg, ea, L, ...)', max_length=20)),
                ('safety_stock', models.DecimalField(decimal_places=4, default=0, help_text='Minimum buffer quantity', max_digits=14)),
                ('reorder_point', models.DecimalField(decimal_places=4, default=0, help_text='Quantity at which a reorder is raised', max_digits=14)),
                ('max_stock', models.DecimalField(decimal_places=4, default=0, help_text='Maximum quantity to hold', max_digits=14)),
                ('lead_time_days', models.PositiveIntegerField(default=0, help_text='Days between placing and receiving a reorder')),
                ('average_daily_cost', models.DecimalField(decimal_places=6, default=0, help_text='Average daily outbound quantity over the trailing 30 days', max_digits=18)),
                ('total_quantity', models.DecimalField(decimal_places=4, default=0, max_digits=14)),
                ('total_value', models.DecimalField(decimal_places=4, default=0, max_digits=18)),
                ('weighted_average_cost', models.DecimalField(decimal_places=6, default=0, max_digits=18)),
                ('history_id', models.AutoField(primary_key=True, serialize=False)),
                ('history_date', models.DateTimeField(db_index=True)),
                ('history_change_reason', models.CharField(max_length=100, null=True)),
                ('history_type', models.CharField(choices=[('+', 'Created'), ('~', 'Changed'), ('-', 'Deleted')], max_length=1)),
                ('history_user', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'historical Stock Item',
                'verbose_name_plural': 'historical Stock Items',
                'ordering': ('-history_date', '-history_id'),
                'get_latest_by': ('history_date', 'history_id'),
            },
            bases=(simple_history.models.HistoricalChanges, models.Model),
        ),
        migrations.CreateModel(
            name='InventoryLot',
            fields=[
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('id', models.CharField(max_length=64, primary_key=True, serialize=False)),
                ('quantity', models.DecimalField(decimal_places=4, help_text='Original quantity received', max_digits=14)),
                ('remaining_quantity', models.DecimalField(decimal_places=4, help_text='Quantity still available in this lot', max_digits=14)),
                ('unit_cost', models.DecimalField(decimal_places=4, help_text='Cost per unit at time of purchase', max_digits=14)),
                ('purchase_date', models.DateTimeField(default=django.utils.timezone.now, help_text='Purchase date (FIFO ordering)')),
                ('expiry_date', models.DateTimeField(blank=True, null=True)),
                ('supplier_id', models.CharField(blank=True, max_length=64)),
                ('warehouse_id', models.CharField(default='DEFAULT', help_text='Store or warehouse holding the lot', max_length=64)),
                ('batch_number', models.CharField(help_text='Batch identifier (YYMMDD-XXXX)', max_length=50)),
                ('sequence', models.PositiveIntegerField(default=0, help_text='Receipt order within the item, breaks purchase date ties')),
                ('item', models.ForeignKey(help_text='Item in this lot', on_delete=django.db.models.deletion.PROTECT, related_name='lots', to='inventory.stockitem')),
            ],
            options={
                'verbose_name': 'Inventory Lot',
                'verbose_name_plural': 'Inventory Lots',
                'ordering': ['purchase_date', 'sequence'],
                'indexes': [
                    models.Index(fields=['item', 'purchase_date', 'sequence'], name='inv_lot_fifo_idx'),
                    models.Index(fields=['item', 'remaining_quantity'], name='inv_lot_remaining_idx'),
                    models.Index(fields=['expiry_date'], name='inv_lot_expiry_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='InventoryMovement',
            fields=[
                ('id', models.CharField(max_length=64, primary_key=True, serialize=False)),
                ('movement_type', models.CharField(choices=[('IN', 'In'), ('OUT', 'Out'), ('ADJUSTMENT', 'Adjustment')], max_length=20)),
                ('quantity', models.DecimalField(decimal_places=4, max_digits=14)),
                ('unit_cost', models.DecimalField(decimal_places=4, max_digits=14)),
                ('total_cost', models.DecimalField(decimal_places=4, max_digits=18)),
                ('reason', models.CharField(blank=True, max_length=255)),
                ('reference_id', models.CharField(blank=True, help_text='Order number, batch number or adjustment reference', max_length=100)),
                ('notes', models.TextField(blank=True)),
                ('performed_by', models.CharField(default='SYSTEM', max_length=150)),
                ('performed_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('item', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='movements', to='inventory.stockitem')),
                ('lot', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='movements', to='inventory.inventorylot')),
            ],
            options={
                'verbose_name': 'Inventory Movement',
                'verbose_name_plural': 'Inventory Movements',
                'ordering': ['-performed_at'],
                'indexes': [
                    models.Index(fields=['item', 'performed_at'], name='inv_mov_item_date_idx'),
                    models.Index(fields=['movement_type', 'performed_at'], name='inv_mov_type_date_idx'),
                ],
            },
        ),
    ]
