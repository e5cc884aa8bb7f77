"""Response and document schemas."""
