"""``ai.krill.*`` envelopes: parsing, classification and dispatch."""
