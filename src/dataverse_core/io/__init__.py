"""I/O layer: the metadata cache and the Web API request client."""
