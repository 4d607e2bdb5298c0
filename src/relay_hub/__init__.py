"""Chat relay hub: conversations, assistant sessions and live subscribers."""
