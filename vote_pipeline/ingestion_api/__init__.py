"""HTTP API for submitting votes and reading results."""
