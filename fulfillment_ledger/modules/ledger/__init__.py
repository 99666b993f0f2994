from .builder import build
from .controller import StatementController
from .model import ClientLedger, LedgerEntry, LedgerFilter
from .normalizer import normalize, normalize_statement_entry, normalize_transactions
