"""PortaPro tenant gateway."""
