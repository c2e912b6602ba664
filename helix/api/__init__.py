"""HTTP API for content delivery and progress writes."""
