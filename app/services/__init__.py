"""Business logic services for the Pine Script Runner."""
