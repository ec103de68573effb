"""Configuration loading (upm.yml + environment overrides)."""
