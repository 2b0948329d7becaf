"""Configuration, logging, errors and service wiring."""
