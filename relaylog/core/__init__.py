"""Core components for event log storage."""
