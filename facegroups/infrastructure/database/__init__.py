"""SQLAlchemy persistence for clusters and processed images."""
