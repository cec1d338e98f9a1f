"""Interactive console client for Gemini Live sessions."""
