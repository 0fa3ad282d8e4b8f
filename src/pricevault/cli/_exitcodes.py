"""Process exit codes used by the pricevault CLI."""

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
DATABASE_ERROR = 3
NOT_FOUND = 4
EXECUTION_FAILURE = 5
