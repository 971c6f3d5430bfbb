"""posts/ -- Posts, the shared resource guarded by optimistic versioning."""
