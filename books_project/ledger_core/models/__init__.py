from .ac_category import AccountCategory
from .account import Account
from .auditlog import AuditLog
from .banking import BankAccount, BankFeedImport, BankTransaction
from .bill import BankTransactionBill, Bill
from .company import Company
from .customer import Customer
from .invoice import BankTransactionInvoice, Invoice
from .journal import JournalEntry, JournalLine
from .reminder import ReminderLog, ReminderRecord
from .vendor import Vendor
