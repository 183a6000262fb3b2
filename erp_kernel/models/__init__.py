"""ORM models for the ERP kernel."""

from erp_kernel.models.accounts import AccountGroup, GeneralLedger, LedgerEntry
from erp_kernel.models.approvable import APPROVAL_STATUS_VALUES, ApprovableMixin
from erp_kernel.models.banking import BankAccount, Loan
from erp_kernel.models.client import Client, CostCenterBalance, SubClient
from erp_kernel.models.client_po import ClientPO
from erp_kernel.models.cost_centre import CostCentre
from erp_kernel.models.invoice import ClientInvoice
from erp_kernel.models.notification import PendingNotification
from erp_kernel.models.sequence import SequenceCounter
from erp_kernel.models.signature import SignatureTrail

__all__ = [
    "APPROVAL_STATUS_VALUES",
    "ApprovableMixin",
    "AccountGroup",
    "GeneralLedger",
    "LedgerEntry",
    "BankAccount",
    "Loan",
    "Client",
    "SubClient",
    "CostCenterBalance",
    "ClientPO",
    "CostCentre",
    "ClientInvoice",
    "PendingNotification",
    "SequenceCounter",
    "SignatureTrail",
]
