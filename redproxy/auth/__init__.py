"""Bearer credential acquisition and lifecycle."""
