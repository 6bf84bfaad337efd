"""PaperSmith API package."""
