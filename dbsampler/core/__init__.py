"""Schema replication, relationship metadata and dependency-closure sampling."""
