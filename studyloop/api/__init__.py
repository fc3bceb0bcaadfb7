"""HTTP API for study sessions."""
