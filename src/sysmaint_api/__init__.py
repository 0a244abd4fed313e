"""HTTP surface for sysmaint."""
