"""Three-way POI data comparison backed by a structured LLM completion."""
