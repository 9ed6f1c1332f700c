from plugins.rentals.billing.rent import (
    effective_end_date, is_active_on, rent_amount_at_date, current_rent_amount,
)
from plugins.rentals.billing.proration import Proration, compute_next_month_proration
from plugins.rentals.billing.invoice_math import compute_invoice_from_contract, format_money
from plugins.rentals.billing.due import due_invoices_for_month, invoice_key, mark_issued
from plugins.rentals.billing.indexing import (
    generate_indexing_dates_from_schedule, compute_future_indexing_dates,
    merge_indexing_dates, next_pending_indexing_date,
)
from plugins.rentals.billing.stats import build_monthly_stats
