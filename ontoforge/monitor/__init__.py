"""Terminal rendering of sync reports and receipts."""
