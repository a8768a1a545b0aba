"""Filing drafts, validation, and the holdings store."""
