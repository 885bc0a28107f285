"""SQLAlchemy persistence for market snapshots."""
