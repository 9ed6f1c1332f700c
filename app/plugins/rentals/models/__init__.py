from plugins.rentals.models.contract import (
    Contract, ContractPartner, ContractExtension, IrregularInvoice,
    ChosenDateInvoice, IndexingDate, ContractScan, RentType, InvoiceMonthMode,
)
from plugins.rentals.models.invoice import (
    Invoice, InvoiceSettings, InvoiceSettingsUpdate, IssueInvoiceRequest, DueInvoice, partner_key,
)
from plugins.rentals.models.deposit import (
    Deposit, DepositCreate, DepositUpdate, DepositType, DepositSummary,
)
from plugins.rentals.models.stats import MoneyTotals, MonthlyStats, InflationResult
