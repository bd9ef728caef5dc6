"""HTTP endpoints of the example service."""
