"""Computer-based testing: timed exam sessions and automatic scoring."""
