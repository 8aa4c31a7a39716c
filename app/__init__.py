"""Token call verification engine."""
