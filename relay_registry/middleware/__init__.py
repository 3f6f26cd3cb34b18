"""HTTP middleware: request ids, access logging and problem+json error handlers."""
