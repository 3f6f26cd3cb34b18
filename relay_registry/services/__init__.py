"""Domain services: registry, peer selection, credentials, admins and access logging."""
