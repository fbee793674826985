from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('returns', '0001_initial'),
    ]

    operations = [
        migrations.AddField(
            model_name='returnrequest',
            name='gateway_refund_id',
            field=models.CharField(blank=True, default='', max_length=100, verbose_name='Gateway refund id'),
        ),
        migrations.AddField(
            model_name='returnrequest',
            name='gateway_refund_amount',
            field=models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True, verbose_name='Gateway refund amount'),
        ),
    ]
