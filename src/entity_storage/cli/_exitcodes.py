"""Process exit codes for the estore CLI."""

SUCCESS = 0
EXECUTION_FAILURE = 1
USAGE_ERROR = 2
NOT_FOUND = 3
