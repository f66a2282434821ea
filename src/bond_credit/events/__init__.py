"""SQLite event log for deposits, withdrawals, allocations, intents and scores."""
