"""Integration tests: drive the installed CLI against throwaway local repositories."""
