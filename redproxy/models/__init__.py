"""Domain entities and the transformers that build them."""
