"""Class-credit ledger and settlement service for a tutoring platform."""
