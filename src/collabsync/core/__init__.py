"""Core logic for collabsync: stores, the GitHub client and the sync worker."""
