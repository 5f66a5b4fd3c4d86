"""Command line client for the clinic booking workflows."""
