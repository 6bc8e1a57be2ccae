"""Domain layer for bankimport application."""

__all__ = [
    "BankImportService",
    "RecurringDetectionService",
    "RuleService",
    "AccountService",
    "RecordService",
]

_SERVICES = {
    "BankImportService": "bankimport.domain.bank_import",
    "RecurringDetectionService": "bankimport.domain.recurring",
    "RuleService": "bankimport.domain.rules",
    "AccountService": "bankimport.domain.account",
    "RecordService": "bankimport.domain.records",
}


# Services are imported lazily: the database layer imports domain entities,
# and the services import the database layer
def __getattr__(name):
    if name in _SERVICES:
        import importlib

        return getattr(importlib.import_module(_SERVICES[name]), name)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
