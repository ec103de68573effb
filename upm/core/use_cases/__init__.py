"""Use cases — operations composed from more than one backend call."""
