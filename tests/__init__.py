"""vmscout test suite."""
