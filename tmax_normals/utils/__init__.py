"""File handling and progress utilities."""
