"""Service layer exports."""

from . import (
	completion_service,
	ledger_service,
	reconciliation_service,
	sql_stores,
	stores,
)

__all__ = [
	"completion_service",
	"ledger_service",
	"reconciliation_service",
	"sql_stores",
	"stores",
]
