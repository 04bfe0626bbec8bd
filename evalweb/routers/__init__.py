"""API routers for the evaldash web service."""
