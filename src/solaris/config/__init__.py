"""Configuration models and the YAML config manager."""
