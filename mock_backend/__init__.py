"""Mock clinic backend served over HTTP for local development."""
