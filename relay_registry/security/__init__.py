"""Authentication, admin tokens, rate limiting and CORS."""
