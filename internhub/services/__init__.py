"""Domain services. Services flush; callers own commit."""
