"""Configuration loading, defaults and workspace layout for microdeploy."""
