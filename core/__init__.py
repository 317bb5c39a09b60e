"""core/ -- Process configuration for Portcullis. Imports nothing from auth/."""
