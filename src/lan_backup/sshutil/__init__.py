"""ssh helpers for lan-backup."""
