"""Generic queue-driven controller loop and the controller registry."""
