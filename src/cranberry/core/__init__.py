"""Registry protocol primitives: references, types and the HTTP client."""
