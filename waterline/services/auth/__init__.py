"""Role profiles and role resolution for staff principals."""
