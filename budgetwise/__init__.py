"""BudgetWise: a 50/30/20 personal budgeting API."""

__all__ = [
    "auth",
    "cli",
    "config",
    "crud",
    "cursor",
    "database",
    "errors",
    "feed",
    "models",
    "reporting",
    "schemas",
    "server",
    "templates",
]

__version__ = "1.0.0"
