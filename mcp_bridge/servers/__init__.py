"""Reference tool providers."""
