"""HTTP interface for the store directory."""
