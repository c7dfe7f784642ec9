"""Configuration, logging setup and the error taxonomy."""
