"""Generation provider adapters and the local template fallback."""
