"""Product catalog helpers: social sharing metadata and price validation."""
