from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("notifications", "0001_initial"),
    ]

    operations = [
        migrations.AlterField(
            model_name="notification",
            name="notification_type",
            field=models.CharField(
                choices=[
                    ("payment_received", "Payment received"),
                    ("payment_failed", "Payment failed"),
                    ("payment_refunded", "Payment refunded"),
                    ("dispute_opened", "Dispute opened"),
                    ("booking_refunded_expert", "Booking conflict refund (expert)"),
                    ("booking_refunded_guest", "Booking conflict refund (guest)"),
                    ("transfer_failed", "Transfer failed"),
                    ("transfer_sent", "Transfer sent"),
                    ("payout_sent", "Payout sent"),
                    ("compliance_payout_sent", "Compliance payout sent"),
                    ("payment_confirmed_guest", "Payment confirmed (guest)"),
                    ("payment_failed_guest", "Payment failed (guest)"),
                    ("voucher_issued_guest", "Payment voucher issued (guest)"),
                ],
                db_index=True,
                help_text="Kind of notification",
                max_length=50,
            ),
        ),
    ]
