"""api/ -- FastAPI application, HTTP models, middleware, and routes."""
