"""
Backend package for the Foody mobile app.

This package provides a FastAPI application for user profiles, food
analyses, image storage and push notification campaigns, plus the storage,
database and messaging wiring those handlers share.
"""
