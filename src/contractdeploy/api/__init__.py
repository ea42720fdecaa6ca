"""HTTP API for the deployment saga."""
