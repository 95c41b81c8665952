"""Worker process hosting the resumable dump engine."""
