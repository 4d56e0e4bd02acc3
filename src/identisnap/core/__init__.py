"""Core application components: state, lifecycle and error handling."""
