"""evaldash HTTP service (FastAPI)."""
