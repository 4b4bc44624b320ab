"""Media proxy paths and streaming."""
