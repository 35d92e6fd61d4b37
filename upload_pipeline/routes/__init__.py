"""HTTP routes for the upload queue API."""
