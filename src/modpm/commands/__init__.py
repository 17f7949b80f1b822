"""Click commands for the modpm CLI."""
