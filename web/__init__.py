"""FastAPI application serving the recorded exchange history."""
